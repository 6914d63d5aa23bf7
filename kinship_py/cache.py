"""Memoized ancestor / descendant walks.

Entries are immutable ``Walk`` snapshots keyed by (person, direction). They
never expire by time; GraphStore calls ``invalidate(person)`` for both
endpoints of every committed mutation, which drops each entry keyed by that
person or containing it among its hits. Any walk whose path crosses the
mutated person has that person as a hit, so the hit index is enough.

Reads take no lock. A walk that was computed while an invalidation happened
is never stored.
"""
from __future__ import annotations
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional, Set, Tuple
import logging
import threading

from .errors import StaleCacheRead

UP = "up"
DOWN = "down"
# biological links only
BLOOD_UP = "blood-up"
BLOOD_DOWN = "blood-down"


@dataclass(frozen=True)
class AncestorHit:
    """A person reached by a walk.

    ``path`` runs from the walk root to ``person`` (both included) along the
    first minimal route; ``path_counts`` holds (depth, number of distinct
    paths) pairs, so pedigree collapse shows up as counts above one.
    """

    person: str
    depth: int
    path: Tuple[str, ...]
    path_counts: Tuple[Tuple[int, int], ...]

    @property
    def path_count(self) -> int:
        return sum(c for _, c in self.path_counts)

    def to_dict(self) -> dict:
        return {
            "person": self.person,
            "depth": self.depth,
            "path": list(self.path),
            "path_counts": {str(d): c for d, c in self.path_counts},
        }


@dataclass(frozen=True)
class Walk:
    root: str
    direction: str
    max_depth: int
    hits: Mapping[str, AncestorHit]
    truncated: bool = False

    def ordered(self) -> List[AncestorHit]:
        return sorted(self.hits.values(), key=lambda h: (h.depth, h.person))

    def limited(self, max_depth: int) -> "Walk":
        """Return this walk cut down to max_depth generations."""
        if max_depth >= self.max_depth:
            return self
        hits: Dict[str, AncestorHit] = {}
        truncated = False
        for pid, hit in self.hits.items():
            counts = tuple((d, c) for d, c in hit.path_counts if d <= max_depth)
            if any(d == max_depth + 1 for d, _ in hit.path_counts):
                truncated = True
            if hit.depth <= max_depth:
                hits[pid] = AncestorHit(pid, hit.depth, hit.path, counts)
        return Walk(self.root, self.direction, max_depth, MappingProxyType(hits), truncated)


WalkFn = Callable[[str, str, int], Walk]


class AncestorCache:
    def __init__(self, compute: WalkFn) -> None:
        self._compute = compute
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[str, str], Walk] = {}
        self._members: Dict[str, Set[Tuple[str, str]]] = {}
        self._generation = 0
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def ancestors_of(self, person: str, max_depth: int) -> List[AncestorHit]:
        return self.walk(person, UP, max_depth).ordered()

    def descendants_of(self, person: str, max_depth: int) -> List[AncestorHit]:
        return self.walk(person, DOWN, max_depth).ordered()

    def walk(self, person: str, direction: str, max_depth: int) -> Walk:
        entry = self._entries.get((person, direction))
        if entry is not None and entry.max_depth >= max_depth:
            self.hits += 1
            return entry.limited(max_depth)
        self.misses += 1
        for _ in range(2):
            try:
                return self._fill(person, direction, max_depth)
            except StaleCacheRead:
                logging.info("cache: walk %s/%s raced an invalidation, recomputing", person, direction)
        return self._compute(person, direction, max_depth)

    def _fill(self, person: str, direction: str, max_depth: int) -> Walk:
        generation = self._generation
        walk = self._compute(person, direction, max_depth)
        key = (person, direction)
        with self._lock:
            if generation != self._generation:
                raise StaleCacheRead(person)
            old = self._entries.get(key)
            if old is not None and old.max_depth >= walk.max_depth:
                return walk
            self._drop(key)
            self._entries[key] = walk
            for member in (person, *walk.hits.keys()):
                self._members.setdefault(member, set()).add(key)
        return walk

    def _drop(self, key: Tuple[str, str]) -> Optional[Walk]:
        walk = self._entries.pop(key, None)
        if walk is None:
            return None
        for member in (walk.root, *walk.hits.keys()):
            keys = self._members.get(member)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._members[member]
        return walk

    def invalidate(self, person: str) -> int:
        """Drop every entry touching person; return how many were dropped."""
        with self._lock:
            self._generation += 1
            dropped = 0
            for key in list(self._members.get(person, ())):
                if self._drop(key) is not None:
                    dropped += 1
            return dropped

    def clear(self) -> None:
        with self._lock:
            self._generation += 1
            self._entries.clear()
            self._members.clear()
