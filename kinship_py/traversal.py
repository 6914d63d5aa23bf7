"""Bounded ancestor / descendant traversal.

Walks go level by level from the root, the same way upward path counting is
done for consanguinity: every level maps frontier node -> number of distinct
paths reaching it, so pedigree collapse is counted instead of looping.
Each person is recorded once, at its minimum depth, with the first minimal
path (parents are visited in sorted id order, so results are deterministic).

Walks are bounded by ``max_depth`` generations and by a wall-clock budget;
running out of time raises ``DepthExceeded``, running out of depth marks the
walk ``truncated``.

Plain walks follow every parent link, step, adoptive and foster included;
they back the cycle check and the public ancestor views. Blood walks
(``blood=True``) follow biological links only and back everything that
reasons about consanguinity: common ancestors, kin sets, classification.
"""
from __future__ import annotations
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple
import time

from .cache import BLOOD_DOWN, BLOOD_UP, DOWN, UP, AncestorCache, AncestorHit, Walk
from .errors import DepthExceeded


@dataclass(frozen=True)
class CommonAncestor:
    ancestor: str
    depth_a: int
    depth_b: int
    path_a: Tuple[str, ...]  # a ... ancestor
    path_b: Tuple[str, ...]  # b ... ancestor
    paths_a: int = 1
    paths_b: int = 1

    @property
    def distance(self) -> int:
        return self.depth_a + self.depth_b

    def to_dict(self) -> dict:
        return {
            "ancestor": self.ancestor,
            "depth_a": self.depth_a,
            "depth_b": self.depth_b,
            "path_a": list(self.path_a),
            "path_b": list(self.path_b),
            "paths_a": self.paths_a,
            "paths_b": self.paths_b,
        }


class CommonAncestors(list):
    """List of CommonAncestor; ``truncated`` tells whether either walk hit max_depth."""

    truncated: bool = False


class AncestryTraversal:
    def __init__(self, store, max_depth: int = 12, timeout: float = 2.0) -> None:
        self._store = store
        self.max_depth = max_depth
        self.timeout = timeout
        self.cache = AncestorCache(self.walk)

    def _step(self, direction: str, extra: Optional[Mapping[str, Iterable[str]]] = None) -> Callable[[str], Tuple[str, ...]]:
        base = {
            UP: self._store.parents_of,
            DOWN: self._store.children_of,
            BLOOD_UP: self._store.blood_parents_of,
            BLOOD_DOWN: self._store.blood_children_of,
        }[direction]
        if not extra:
            return base

        def step(node: str) -> Tuple[str, ...]:
            return tuple(base(node)) + tuple(extra.get(node, ()))

        return step

    def walk(self, root: str, direction: str = UP, max_depth: Optional[int] = None, extra: Optional[Mapping[str, Iterable[str]]] = None) -> Walk:
        """Uncached bounded walk from root. ``extra`` overlays additional
        adjacency (node -> neighbours in the walk direction)."""
        if max_depth is None:
            max_depth = self.max_depth
        step = self._step(direction, extra)
        deadline = time.monotonic() + self.timeout

        counts: Dict[str, Dict[int, int]] = {}
        first: Dict[str, Tuple[int, Tuple[str, ...]]] = {}
        current: Dict[str, int] = {root: 1}
        paths: Dict[str, Tuple[str, ...]] = {root: (root,)}

        for depth in range(max_depth):
            if not current:
                break
            if time.monotonic() > deadline:
                raise DepthExceeded(root, depth, "timeout")
            next_level: Dict[str, int] = {}
            next_paths: Dict[str, Tuple[str, ...]] = {}
            for node in sorted(current):
                ways = current[node]
                for nb in sorted(set(step(node))):
                    if nb == root:
                        # only reachable through corrupt data; never report root as its own ancestor
                        continue
                    by_depth = counts.setdefault(nb, {})
                    by_depth[depth + 1] = by_depth.get(depth + 1, 0) + ways
                    next_level[nb] = next_level.get(nb, 0) + ways
                    if nb not in next_paths:
                        next_paths[nb] = paths[node] + (nb,)
                    if nb not in first:
                        first[nb] = (depth + 1, next_paths[nb])
            current = next_level
            paths = next_paths

        truncated = any(step(node) for node in current)
        hits = {
            pid: AncestorHit(pid, first[pid][0], first[pid][1], tuple(sorted(by_depth.items())))
            for pid, by_depth in counts.items()
        }
        return Walk(root, direction, max_depth, MappingProxyType(hits), truncated)

    # --- cached views -------------------------------------------------------------
    def ancestor_walk(self, person: str, max_depth: Optional[int] = None, blood: bool = False) -> Walk:
        return self.cache.walk(person, BLOOD_UP if blood else UP, self.max_depth if max_depth is None else max_depth)

    def descendant_walk(self, person: str, max_depth: Optional[int] = None, blood: bool = False) -> Walk:
        return self.cache.walk(person, BLOOD_DOWN if blood else DOWN, self.max_depth if max_depth is None else max_depth)

    def ancestors(self, person: str, max_depth: Optional[int] = None, blood: bool = False) -> List[AncestorHit]:
        return self.ancestor_walk(person, max_depth, blood).ordered()

    def descendants(self, person: str, max_depth: Optional[int] = None, blood: bool = False) -> List[AncestorHit]:
        return self.descendant_walk(person, max_depth, blood).ordered()

    def find_common_ancestors(self, a: str, b: str, max_depth: Optional[int] = None, blood: bool = True) -> CommonAncestors:
        """Intersect the ancestor sets of a and b (each including itself at depth 0).

        Sorted by total distance, then ancestor id. Biological links only
        unless ``blood`` is False.
        """
        wa = self.ancestor_walk(a, max_depth, blood)
        wb = self.ancestor_walk(b, max_depth, blood)
        side_a = dict(wa.hits)
        side_a[a] = AncestorHit(a, 0, (a,), ((0, 1),))
        side_b = dict(wb.hits)
        side_b[b] = AncestorHit(b, 0, (b,), ((0, 1),))

        out = CommonAncestors()
        for anc in set(side_a) & set(side_b):
            ha, hb = side_a[anc], side_b[anc]
            out.append(CommonAncestor(anc, ha.depth, hb.depth, ha.path, hb.path, ha.path_count, hb.path_count))
        out.sort(key=lambda c: (c.distance, c.ancestor))
        out.truncated = wa.truncated or wb.truncated
        return out

    def is_ancestor(self, candidate: str, person: str, max_depth: Optional[int] = None, extra_parents: Optional[Mapping[str, Iterable[str]]] = None) -> Optional[Tuple[str, ...]]:
        """Return the path person -> ... -> candidate if candidate is an ancestor."""
        if extra_parents:
            walk = self.walk(person, UP, max_depth, extra=extra_parents)
        else:
            walk = self.ancestor_walk(person, max_depth)
        hit = walk.hits.get(candidate)
        return hit.path if hit else None

    def immediate_family(self, person: str) -> Set[str]:
        family = set(self._store.parents_of(person)) | set(self._store.children_of(person))
        family.update(sid for sid, _ in self._store.spouses_of(person))
        family.discard(person)
        return family

    def kin_set(self, person: str, depth: int, blood: bool = True) -> Set[str]:
        """Relatives within depth: ancestors up to depth and every descendant
        of them (and of the person) up to depth. Blood relatives only unless
        ``blood`` is False."""
        tops = {person} | {h.person for h in self.ancestors(person, depth, blood)}
        kin = set(tops)
        for top in tops:
            kin.update(h.person for h in self.descendants(top, depth, blood))
        return kin

    def tree_of(self, person: str, depth: Optional[int] = None) -> Set[str]:
        """Kin set over every parent link plus the spouses of everyone in it."""
        kin = self.kin_set(person, self.max_depth if depth is None else depth, blood=False)
        tree = set(kin)
        for pid in kin:
            tree.update(sid for sid, _ in self._store.spouses_of(pid))
        return tree
