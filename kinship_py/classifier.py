"""Pairwise relationship classification.

``RelationshipClassifier.classify(a, b)`` describes what ``b`` is to ``a``.
It never fails because the graph is disconnected or inconsistent: a pair with
no connection is ``unrelated``, and a pair whose search ran out of depth or
time is ``unknown``.

Order of resolution:

1. same person;
2. a direct union edge (current unions before ex-unions);
3. blood: lowest common ancestors grouped by (depth_a, depth_b), closest
   group first, ties broken towards the group with more ancestors (full over
   half), then the configured removal preference, then ids;
4. a declared sibling-derived edge (accepted bridge claims and the like);
5. step, adoptive or foster: the same search as 3 over every parent link,
   reported with the kind of the non-biological link on the path as
   ``halfness``;
6. in-law: exactly one union hop, ``a ~blood~ x = y ~blood~ b``.

Steps 3 and 6 follow biological parent links only, so a step-parent is never
counted as a common ancestor and never makes siblings full siblings.

Every other group of lowest common ancestors is kept in ``alternates`` so
pedigree collapse and double relationships are visible to the caller.
"""
from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Tuple
import logging

from .catalog import SIBLING_DERIVED, UNION
from .cousins import cousin_label
from .errors import DepthExceeded
from .traversal import CommonAncestor

SELF = "self"
SPOUSE = "spouse"
ANCESTOR = "ancestor"
DESCENDANT = "descendant"
SIBLING = "sibling"
AUNT_UNCLE = "aunt_uncle"
NIECE_NEPHEW = "niece_nephew"
COUSIN = "cousin"
IN_LAW = "in_law"
UNRELATED = "unrelated"
UNKNOWN = "unknown"

# parent-link halfness values that are not biological, strongest first
NON_BIOLOGICAL = ("step", "foster", "adoptive")

_INVERSE_KIND = {
    ANCESTOR: DESCENDANT,
    DESCENDANT: ANCESTOR,
    AUNT_UNCLE: NIECE_NEPHEW,
    NIECE_NEPHEW: AUNT_UNCLE,
}

# relation of the next person on a path to the previous one
_INVERSE_RELATION = {
    "parent": "child",
    "child": "parent",
    "grandparent": "grandchild",
    "grandchild": "grandparent",
    "aunt_uncle": "niece_nephew",
    "niece_nephew": "aunt_uncle",
}

_GENDERED = {
    "parent": ("father", "mother"),
    "child": ("son", "daughter"),
    "spouse": ("husband", "wife"),
    "partner": ("husband", "wife"),
    "sibling": ("brother", "sister"),
}


def _gendered(relation: str, gender: Optional[str]) -> str:
    words = _GENDERED.get(relation)
    if not words or gender not in ("M", "F"):
        return relation
    return words[0] if gender == "M" else words[1]


@dataclass(frozen=True)
class KinPath:
    """A route from a to b.

    ``relations[i]`` is what ``persons[i + 1]`` is to ``persons[i]``.
    ``genders[i]`` is the gender of ``persons[i]``; it is blanked for the apex
    of a full (couple) relationship so the expression stays neutral there.
    """

    persons: Tuple[str, ...]
    relations: Tuple[str, ...]
    genders: Tuple[Optional[str], ...]

    def tokens(self) -> List[str]:
        last = len(self.relations) - 1
        return [rel if i == last else _gendered(rel, self.genders[i + 1]) for i, rel in enumerate(self.relations)]

    @property
    def expression(self) -> str:
        """Dotted path, gendered except for the final step: 'father.parent.child'."""
        return ".".join(self.tokens())

    @property
    def neutral_expression(self) -> str:
        return ".".join(self.relations)

    @property
    def lineage(self) -> Optional[str]:
        """'paternal' or 'maternal' when the path leaves a through a known-gender parent."""
        if not self.relations or self.relations[0] != "parent" or len(self.genders) < 2:
            return None
        return {"M": "paternal", "F": "maternal"}.get(self.genders[1])

    def reversed(self) -> "KinPath":
        relations = tuple(_INVERSE_RELATION.get(r, r) for r in reversed(self.relations))
        return KinPath(tuple(reversed(self.persons)), relations, tuple(reversed(self.genders)))

    def joined(self, relation: str, other: "KinPath") -> "KinPath":
        return KinPath(self.persons + other.persons, self.relations + (relation,) + other.relations, self.genders + other.genders)

    def to_dict(self) -> dict:
        return {"persons": list(self.persons), "relations": list(self.relations), "expression": self.expression}


@dataclass(frozen=True)
class AlternatePath:
    common_ancestors: Tuple[str, ...]
    depth_a: int
    depth_b: int
    kind: str
    cousin_degree: Optional[int] = None
    cousin_removed: Optional[int] = None
    halfness: Optional[str] = None
    path_count: int = 1

    def inverse(self) -> "AlternatePath":
        return replace(self, depth_a=self.depth_b, depth_b=self.depth_a, kind=_INVERSE_KIND.get(self.kind, self.kind))

    def to_dict(self) -> dict:
        return {
            "common_ancestors": list(self.common_ancestors),
            "depth_a": self.depth_a,
            "depth_b": self.depth_b,
            "kind": self.kind,
            "cousin_degree": self.cousin_degree,
            "cousin_removed": self.cousin_removed,
            "halfness": self.halfness,
            "path_count": self.path_count,
        }


@dataclass(frozen=True)
class RelationshipClassification:
    kind: str
    a: str
    b: str
    depth_a: Optional[int] = None
    depth_b: Optional[int] = None
    generation_offset: Optional[int] = None
    distance: Optional[int] = None
    cousin_degree: Optional[int] = None
    cousin_removed: Optional[int] = None
    halfness: Optional[str] = None
    in_law: bool = False
    is_ex: bool = False
    declared: bool = False
    edge_type: Optional[str] = None
    via: Tuple[str, ...] = ()
    common_ancestors: Tuple[str, ...] = ()
    path: Optional[KinPath] = None
    path_count: int = 0
    alternates: Tuple[AlternatePath, ...] = ()
    near: Optional["RelationshipClassification"] = None
    far: Optional["RelationshipClassification"] = None
    notes: Tuple[str, ...] = ()

    @property
    def related(self) -> bool:
        return self.kind not in (UNRELATED, UNKNOWN)

    @property
    def generations(self) -> Optional[int]:
        """Generations between a and b for direct-line relationships."""
        if self.kind in (ANCESTOR, DESCENDANT) and self.generation_offset is not None:
            return abs(self.generation_offset)
        return None

    @property
    def lineage(self) -> Optional[str]:
        return self.path.lineage if self.path else None

    @property
    def path_expression(self) -> str:
        return self.path.expression if self.path else ""

    def inverse(self) -> "RelationshipClassification":
        """The same relationship seen from b."""
        return replace(
            self,
            kind=_INVERSE_KIND.get(self.kind, self.kind),
            a=self.b,
            b=self.a,
            depth_a=self.depth_b,
            depth_b=self.depth_a,
            generation_offset=-self.generation_offset if self.generation_offset is not None else None,
            via=tuple(reversed(self.via)),
            path=self.path.reversed() if self.path else None,
            alternates=tuple(alt.inverse() for alt in self.alternates),
            near=self.far.inverse() if self.far else None,
            far=self.near.inverse() if self.near else None,
        )

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "a": self.a,
            "b": self.b,
            "depth_a": self.depth_a,
            "depth_b": self.depth_b,
            "generation_offset": self.generation_offset,
            "distance": self.distance,
            "cousin_degree": self.cousin_degree,
            "cousin_removed": self.cousin_removed,
            "halfness": self.halfness,
            "lineage": self.lineage,
            "in_law": self.in_law,
            "is_ex": self.is_ex,
            "declared": self.declared,
            "edge_type": self.edge_type,
            "via": list(self.via),
            "common_ancestors": list(self.common_ancestors),
            "path": self.path.to_dict() if self.path else None,
            "path_count": self.path_count,
            "alternates": [alt.to_dict() for alt in self.alternates],
            "notes": list(self.notes),
        }


def _collateral(depth_a: int, depth_b: int) -> Tuple[str, Optional[int], Optional[int]]:
    """Kind, cousin degree and removal of b relative to a."""
    if depth_a == 0:
        return DESCENDANT, None, None
    if depth_b == 0:
        return ANCESTOR, None, None
    _, degree, removed = cousin_label(depth_b, depth_a)
    if degree == 0 and removed == 0:
        return SIBLING, 0, 0
    if degree == 0:
        return (AUNT_UNCLE if depth_b < depth_a else NIECE_NEPHEW), 0, removed
    return COUSIN, degree, removed


class RelationshipClassifier:
    def __init__(self, store, config=None) -> None:
        self.store = store
        self.traversal = store.traversal
        self.config = config or store.config

    def _gender(self, pid: str) -> Optional[str]:
        p = self.store.get_person(pid)
        return p.gender if p else None

    def classify(self, a: str, b: str) -> RelationshipClassification:
        self.store.require_person(a)
        self.store.require_person(b)
        if a == b:
            return RelationshipClassification(SELF, a, b, depth_a=0, depth_b=0, generation_offset=0, distance=0)
        try:
            union = self._union(a, b)
            if union is not None:
                return union
            blood, truncated = self._blood(a, b)
            if blood is not None:
                return blood
            declared = self._declared(a, b)
            if declared is not None:
                return declared
            nonbiological = self._nonbiological(a, b)
            if nonbiological is not None:
                return nonbiological
            in_law = self._in_law(a, b)
            if in_law is not None:
                return in_law
        except DepthExceeded as exc:
            logging.warning("classification of %s/%s degraded to unknown: %s", a, b, exc)
            return RelationshipClassification(UNKNOWN, a, b, notes=(str(exc),))
        if truncated:
            return RelationshipClassification(UNKNOWN, a, b, notes=(f"no relationship within {self.traversal.max_depth} generations",))
        return RelationshipClassification(UNRELATED, a, b)

    # --- steps ------------------------------------------------------------------
    def _union(self, a: str, b: str) -> Optional[RelationshipClassification]:
        unions = [e for e in self.store.edges_between(a, b) if self.store.catalog[e.type_code].category == UNION]
        if not unions:
            return None
        edge = sorted(unions, key=lambda e: (e.is_ex, e.type_code))[0]
        path = KinPath((a, b), (edge.type_code,), (self._gender(a), self._gender(b)))
        return RelationshipClassification(
            SPOUSE, a, b, depth_a=0, depth_b=0, generation_offset=0, distance=1,
            is_ex=edge.is_ex, edge_type=edge.type_code, path=path, path_count=1,
        )

    def _lowest(self, common: Sequence[CommonAncestor], blood: bool = True) -> List[CommonAncestor]:
        """Drop common ancestors that sit above another common ancestor."""
        ids = {c.ancestor for c in common}
        redundant = set()
        for c in common:
            above = self.traversal.ancestor_walk(c.ancestor, blood=blood).hits.keys()
            redundant.update(ids.intersection(above))
        return [c for c in common if c.ancestor not in redundant]

    def _group_key(self, key: Tuple[int, int], members: List[CommonAncestor]):
        removal = abs(key[0] - key[1])
        if self.config.cousin_tie_break == "max_removal":
            removal = -removal
        return (key[0] + key[1], -len(members), removal, tuple(sorted(c.ancestor for c in members)))

    def _blood(self, a: str, b: str, blood: bool = True) -> Tuple[Optional[RelationshipClassification], bool]:
        common = self.traversal.find_common_ancestors(a, b, blood=blood)
        if not common:
            return None, common.truncated
        groups: Dict[Tuple[int, int], List[CommonAncestor]] = {}
        for c in self._lowest(common, blood):
            groups.setdefault((c.depth_a, c.depth_b), []).append(c)
        ranked = sorted(groups, key=lambda k: self._group_key(k, groups[k]))
        chosen = ranked[0]
        depth_a, depth_b = chosen
        members = sorted(groups[chosen], key=lambda c: c.ancestor)
        full = len(members) >= 2

        kind, degree, removed = _collateral(depth_a, depth_b)
        halfness = ("full" if full else "half") if depth_a and depth_b else None

        lead = members[0]
        persons = lead.path_a + tuple(reversed(lead.path_b))[1:]
        genders = [self._gender(p) for p in persons]
        if full:
            genders[depth_a] = None
        path = KinPath(persons, ("parent",) * depth_a + ("child",) * depth_b, tuple(genders))

        alternates = []
        for key in ranked[1:]:
            group = sorted(groups[key], key=lambda c: c.ancestor)
            alt_kind, alt_degree, alt_removed = _collateral(*key)
            alternates.append(
                AlternatePath(
                    common_ancestors=tuple(c.ancestor for c in group),
                    depth_a=key[0],
                    depth_b=key[1],
                    kind=alt_kind,
                    cousin_degree=alt_degree,
                    cousin_removed=alt_removed,
                    halfness=(("full" if len(group) >= 2 else "half") if key[0] and key[1] else None),
                    path_count=sum(c.paths_a * c.paths_b for c in group),
                )
            )

        path_count = sum(c.paths_a * c.paths_b for c in members)
        notes = []
        if path_count > len(members):
            notes.append(f"pedigree collapse: {path_count} paths through the closest common ancestors")
        if len(members) > 2:
            notes.append(f"{len(members)} closest common ancestors (double relationship)")
        if alternates:
            notes.append(f"{len(alternates)} further line(s) of descent")

        result = RelationshipClassification(
            kind, a, b,
            depth_a=depth_a,
            depth_b=depth_b,
            generation_offset=depth_a - depth_b,
            distance=depth_a + depth_b,
            cousin_degree=degree,
            cousin_removed=removed,
            halfness=halfness,
            common_ancestors=tuple(c.ancestor for c in members),
            path=path,
            path_count=path_count,
            alternates=tuple(alternates),
            notes=tuple(notes),
        )
        return result, common.truncated

    def _link_halfness(self, *paths: Sequence[str]) -> Optional[str]:
        """Strongest non-biological halfness among the parent links of upward paths."""
        found = set()
        for path in paths:
            for child, parent in zip(path, path[1:]):
                edge = self.store.edge_between(parent, child, "parent")
                if edge is not None and not edge.is_biological:
                    found.add(edge.halfness)
        return next((h for h in NON_BIOLOGICAL if h in found), None)

    def _nonbiological(self, a: str, b: str) -> Optional[RelationshipClassification]:
        result, _ = self._blood(a, b, blood=False)
        if result is None:
            return None
        persons = result.path.persons
        up_a = persons[:result.depth_a + 1]
        up_b = tuple(reversed(persons[result.depth_a:]))
        halfness = self._link_halfness(up_a, up_b)
        if halfness is None:
            return None
        return replace(
            result,
            halfness=halfness,
            alternates=(),
            notes=result.notes + (f"{halfness} link between {a} and {b}",),
        )

    def _declared(self, a: str, b: str) -> Optional[RelationshipClassification]:
        catalog = self.store.catalog
        edges = [
            e for e in self.store.edges_between(a, b)
            if catalog[e.type_code].category == SIBLING_DERIVED and (e.person_a == a or catalog[e.type_code].is_symmetric)
        ]
        if not edges:
            return None
        edge = sorted(edges, key=lambda e: e.type_code)[0]
        # edge reads "a is <type> of b"; the path step says what b is to a
        relation = _INVERSE_RELATION.get(edge.type_code, edge.type_code)
        path = KinPath((a, b), (relation,), (self._gender(a), self._gender(b)))
        common = dict(a=a, b=b, declared=True, edge_type=edge.type_code, path=path, path_count=1, in_law=edge.in_law)
        if edge.type_code == "sibling":
            halfness = "full" if edge.halfness == "none" else edge.halfness
            return RelationshipClassification(SIBLING, depth_a=1, depth_b=1, generation_offset=0, distance=2, cousin_degree=0, cousin_removed=0, halfness=halfness, **common)
        if edge.type_code == "cousin":
            degree = edge.cousin_degree or 1
            removed = edge.cousin_removed or 0
            halfness = "half" if edge.halfness == "half" else "full"
            return RelationshipClassification(COUSIN, cousin_degree=degree, cousin_removed=removed, halfness=halfness, distance=2 * (degree + 1) + removed, **common)
        depths = {
            "grandparent": (0, 2),
            "grandchild": (2, 0),
            "aunt_uncle": (1, 2),
            "niece_nephew": (2, 1),
        }[edge.type_code]
        kind, degree, removed = _collateral(*depths)
        return RelationshipClassification(
            kind, depth_a=depths[0], depth_b=depths[1], generation_offset=depths[0] - depths[1],
            distance=sum(depths), cousin_degree=degree, cousin_removed=removed, **common,
        )

    def _in_law(self, a: str, b: str) -> Optional[RelationshipClassification]:
        depth = self.config.in_law_depth
        kin_a = self.traversal.kin_set(a, depth)
        kin_b = self.traversal.kin_set(b, depth)
        best = None
        for x in sorted(kin_a - kin_b):
            for y, edge in self.store.spouses_of(x):
                if y in kin_a or y not in kin_b:
                    continue
                near = self._blood(a, x)[0] if x != a else None
                far = self._blood(y, b)[0] if y != b else None
                if (x != a and near is None) or (y != b and far is None):
                    continue
                total = (near.distance if near else 0) + 1 + (far.distance if far else 0)
                key = (total, tuple(sorted((x, y))), edge.is_ex)
                if best is None or key < best[0]:
                    best = (key, x, y, edge, near, far)
        if best is None:
            return None

        (total, _, _), x, y, edge, near, far = best
        start = near.path if near else KinPath((a,), (), (self._gender(a),))
        end = far.path if far else KinPath((b,), (), (self._gender(b),))
        path = start.joined(edge.type_code, end)
        offset = (near.generation_offset if near else 0) + (far.generation_offset if far else 0)
        return RelationshipClassification(
            IN_LAW, a, b,
            generation_offset=offset,
            distance=total,
            in_law=True,
            is_ex=edge.is_ex,
            edge_type=edge.type_code,
            via=(x, y),
            path=path,
            path_count=1,
            near=near,
            far=far,
        )
