"""Graph storage backed by SQLite.

``GraphStore`` is the only component that mutates graph state. Persons,
relationship edges, duplicate candidates, bridge requests and merge history
live in ``<root>/kinship.db``; the store keeps them in memory dicts as well
(``self.persons``, ``self.edges``, ...) together with a parent/child/union
index used by the traversal. The parent index exists twice: every parent
link (step, adoptive and foster included) for cycle checks and locking, and
biological links only for kinship.

Write protocol for edges:

1. validate type, persons and qualifiers;
2. lock the ancestor/descendant closure of every endpoint (keyed locks,
   sorted acquisition, time bounded) and re-check the closure under lock;
3. run the cycle and parent-slot checks against committed state plus the
   edges earlier in the same batch;
4. write edge + inverse rows in one SQLite transaction;
5. only after commit, swap the in-memory index, invalidate the cache for
   every endpoint and emit ``relationship_added``.

Readers always see committed state: index values are tuples replaced
wholesale under ``self._lock``.
"""
from __future__ import annotations
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional, Set, Tuple
import json
import logging
import sqlite3
import threading
import time

from .catalog import CATALOG, PARENT_CHILD, UNION, get_type, validate_qualifiers
from .config import Config
from .errors import (
    CycleDetected,
    DuplicateEdge,
    EdgeNotFound,
    LockTimeout,
    MergeConflict,
    ParentConflict,
    PersonInUse,
    PersonNotFound,
)
from .events import RELATIONSHIP_ADDED, RELATIONSHIP_REMOVED, EventBus
from .locks import KeyedLocks
from .models import (
    GENDERS,
    BridgeRequest,
    CDate,
    MergeResult,
    Person,
    Place,
    PotentialDuplicate,
    RelationshipEdge,
    RelationshipType,
    _new_id,
    utcnow,
)
from .traversal import AncestryTraversal

# person fields copied onto the kept profile when it has no value of its own
MERGEABLE_FIELDS = (
    "maiden_name",
    "middle_name",
    "nickname",
    "gender",
    "birth_date",
    "birth_place",
    "death_date",
    "death_place",
    "email",
    "phone",
    "current_place",
)


def _dict_to_json(obj: Any) -> Optional[str]:
    return json.dumps(obj, ensure_ascii=False) if obj is not None else None


def _json_to_dict(s: Optional[str]) -> Any:
    return json.loads(s) if s else None


class EdgeSpec(NamedTuple):
    person_a: str
    person_b: str
    type_code: str
    qualifiers: Dict[str, Any] = {}


@dataclass
class _Plan:
    rows: List[RelationshipEdge] = field(default_factory=list)
    ids: List[str] = field(default_factory=list)
    endpoints: Set[str] = field(default_factory=set)


class GraphStore:
    def __init__(self, root: Path, config: Optional[Config] = None, events: Optional[EventBus] = None, catalog: Mapping[str, RelationshipType] = CATALOG) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.config = config or Config(data_dir=self.root)
        self.catalog = catalog
        self.events = events or EventBus()
        # guards the sqlite connection and the in-memory swap
        self._lock = threading.RLock()
        self._subtree_locks = KeyedLocks(self.config.lock_timeout)
        self._db_file = self.root / "kinship.db"
        self._conn: Optional[sqlite3.Connection] = None
        self._connect()
        self._ensure_tables()
        self.traversal = AncestryTraversal(self, self.config.max_depth, self.config.traversal_timeout)
        self.cache = self.traversal.cache
        self._load()

    def _connect(self) -> None:
        if self._conn is None:
            # handlers may run in worker threads; access is serialized by self._lock
            self._conn = sqlite3.connect(str(self._db_file), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _ensure_tables(self) -> None:
        cur = self._conn.cursor()
        cur.executescript(
            """
            CREATE TABLE IF NOT EXISTS persons(
                id TEXT PRIMARY KEY,
                first_name TEXT,
                last_name TEXT,
                maiden_name TEXT,
                middle_name TEXT,
                nickname TEXT,
                gender TEXT,
                birth_date_json TEXT,
                birth_place_json TEXT,
                death_date_json TEXT,
                death_place_json TEXT,
                is_living INTEGER,
                email TEXT,
                phone TEXT,
                current_place_json TEXT,
                merged_into TEXT
            );
            CREATE TABLE IF NOT EXISTS edges(
                id TEXT PRIMARY KEY,
                pair_id TEXT,
                person_a TEXT NOT NULL,
                person_b TEXT NOT NULL,
                type_code TEXT NOT NULL,
                halfness TEXT,
                in_law INTEGER,
                is_ex INTEGER,
                cousin_degree INTEGER,
                cousin_removed INTEGER,
                marriage_date TEXT,
                divorce_date TEXT,
                lineage TEXT,
                created_at TEXT,
                UNIQUE(person_a, person_b, type_code)
            );
            CREATE INDEX IF NOT EXISTS edges_person_b ON edges(person_b);
            CREATE TABLE IF NOT EXISTS potential_duplicates(
                id TEXT PRIMARY KEY,
                profile_a TEXT NOT NULL,
                profile_b TEXT NOT NULL,
                data_json TEXT NOT NULL,
                status TEXT,
                UNIQUE(profile_a, profile_b)
            );
            CREATE TABLE IF NOT EXISTS bridge_requests(
                id TEXT PRIMARY KEY,
                requester TEXT NOT NULL,
                target TEXT NOT NULL,
                data_json TEXT NOT NULL,
                status TEXT
            );
            CREATE TABLE IF NOT EXISTS bridge_blocks(
                user_id TEXT NOT NULL,
                blocked_user_id TEXT NOT NULL,
                reason TEXT,
                created_at TEXT,
                PRIMARY KEY(user_id, blocked_user_id)
            );
            CREATE TABLE IF NOT EXISTS merge_history(
                id TEXT PRIMARY KEY,
                kept_id TEXT NOT NULL,
                merged_id TEXT NOT NULL,
                duplicate_id TEXT,
                merged_by TEXT,
                data_json TEXT,
                created_at TEXT
            );
            """
        )
        self._conn.commit()

    # --- loading ----------------------------------------------------------------
    def _load(self) -> None:
        self.persons: Dict[str, Person] = {}
        self.edges: Dict[str, RelationshipEdge] = {}
        self.duplicates: Dict[str, PotentialDuplicate] = {}
        self.bridges: Dict[str, BridgeRequest] = {}
        self.blocks: Dict[Tuple[str, str], Optional[str]] = {}

        cur = self._conn.cursor()
        cur.execute("SELECT * FROM persons")
        for row in cur.fetchall():
            p = self._row_to_person(row)
            self.persons[p.id] = p

        cur.execute("SELECT * FROM edges")
        for row in cur.fetchall():
            e = self._row_to_edge(row)
            if e.type_code not in self.catalog:
                logging.warning("Skipping edge %s with unknown type %s", e.id, e.type_code)
                continue
            self.edges[e.id] = e

        cur.execute("SELECT data_json FROM potential_duplicates")
        for row in cur.fetchall():
            d = PotentialDuplicate.from_dict(_json_to_dict(row["data_json"]))
            self.duplicates[d.id] = d

        cur.execute("SELECT data_json FROM bridge_requests")
        for row in cur.fetchall():
            r = BridgeRequest.from_dict(_json_to_dict(row["data_json"]))
            self.bridges[r.id] = r

        cur.execute("SELECT user_id, blocked_user_id, reason FROM bridge_blocks")
        for row in cur.fetchall():
            self.blocks[(row["user_id"], row["blocked_user_id"])] = row["reason"]

        self._rebuild_index()
        logging.info("GraphStore loaded %d persons and %d edges from %s", len(self.persons), len(self.edges), str(self._db_file))

    @staticmethod
    def _row_to_person(row: sqlite3.Row) -> Person:
        return Person(
            id=row["id"],
            first_name=row["first_name"] or "",
            last_name=row["last_name"] or "",
            maiden_name=row["maiden_name"],
            middle_name=row["middle_name"],
            nickname=row["nickname"],
            gender=row["gender"],
            birth_date=CDate.from_dict(_json_to_dict(row["birth_date_json"])),
            birth_place=Place.from_dict(_json_to_dict(row["birth_place_json"])),
            death_date=CDate.from_dict(_json_to_dict(row["death_date_json"])),
            death_place=Place.from_dict(_json_to_dict(row["death_place_json"])),
            is_living=bool(row["is_living"]),
            email=row["email"],
            phone=row["phone"],
            current_place=Place.from_dict(_json_to_dict(row["current_place_json"])),
            merged_into=row["merged_into"],
        )

    @staticmethod
    def _row_to_edge(row: sqlite3.Row) -> RelationshipEdge:
        d = dict(row)
        return RelationshipEdge.from_dict(d)

    # --- index ------------------------------------------------------------------
    def _rebuild_index(self) -> None:
        self._by_key: Dict[Tuple[str, str, str], str] = {}
        self._edges_by_person: Dict[str, Tuple[str, ...]] = {}
        # every parent link (cycle checks, locking) and biological links only (kinship)
        self._parents: Dict[str, Tuple[str, ...]] = {}
        self._children: Dict[str, Tuple[str, ...]] = {}
        self._blood_parents: Dict[str, Tuple[str, ...]] = {}
        self._blood_children: Dict[str, Tuple[str, ...]] = {}
        for e in self.edges.values():
            self._index_edge(e)

    @staticmethod
    def _add_to(index: Dict[str, Tuple[str, ...]], key: str, value: str) -> None:
        current = index.get(key, ())
        if value not in current:
            index[key] = current + (value,)

    @staticmethod
    def _remove_from(index: Dict[str, Tuple[str, ...]], key: str, value: str) -> None:
        current = index.get(key, ())
        if value in current:
            remaining = tuple(v for v in current if v != value)
            if remaining:
                index[key] = remaining
            else:
                del index[key]

    def _index_edge(self, e: RelationshipEdge) -> None:
        self._by_key[(e.person_a, e.person_b, e.type_code)] = e.id
        self._add_to(self._edges_by_person, e.person_a, e.id)
        self._add_to(self._edges_by_person, e.person_b, e.id)
        if e.type_code == "parent":
            self._add_to(self._parents, e.person_b, e.person_a)
            self._add_to(self._children, e.person_a, e.person_b)
            if e.is_biological:
                self._add_to(self._blood_parents, e.person_b, e.person_a)
                self._add_to(self._blood_children, e.person_a, e.person_b)

    def _unindex_edge(self, e: RelationshipEdge) -> None:
        self._by_key.pop((e.person_a, e.person_b, e.type_code), None)
        self._remove_from(self._edges_by_person, e.person_a, e.id)
        self._remove_from(self._edges_by_person, e.person_b, e.id)
        if e.type_code == "parent":
            self._remove_from(self._parents, e.person_b, e.person_a)
            self._remove_from(self._children, e.person_a, e.person_b)
            self._remove_from(self._blood_parents, e.person_b, e.person_a)
            self._remove_from(self._blood_children, e.person_a, e.person_b)

    # --- read API used by traversal and the rest of the core --------------------
    def parents_of(self, pid: str) -> Tuple[str, ...]:
        return self._parents.get(pid, ())

    def children_of(self, pid: str) -> Tuple[str, ...]:
        return self._children.get(pid, ())

    def blood_parents_of(self, pid: str) -> Tuple[str, ...]:
        return self._blood_parents.get(pid, ())

    def blood_children_of(self, pid: str) -> Tuple[str, ...]:
        return self._blood_children.get(pid, ())

    def spouses_of(self, pid: str, include_ex: bool = True) -> List[Tuple[str, RelationshipEdge]]:
        out = []
        for eid in self._edges_by_person.get(pid, ()):
            e = self.edges.get(eid)
            if e is None or self.catalog[e.type_code].category != UNION:
                continue
            if e.is_ex and not include_ex:
                continue
            out.append((e.other(pid), e))
        out.sort(key=lambda item: (item[1].is_ex, item[0]))
        return out

    def biological_parent_edges(self, child: str) -> List[RelationshipEdge]:
        out = []
        for parent in self.blood_parents_of(child):
            eid = self._by_key.get((parent, child, "parent"))
            if eid:
                out.append(self.edges[eid])
        return out

    def get_edge(self, edge_id: str) -> Optional[RelationshipEdge]:
        return self.edges.get(edge_id)

    def get_edges(self, pid: str) -> List[RelationshipEdge]:
        """Edges seen from pid: directed rows where pid is person_a and
        symmetric rows where pid is either endpoint."""
        out = []
        for eid in self._edges_by_person.get(pid, ()):
            e = self.edges.get(eid)
            if e is None:
                continue
            if e.person_a == pid or self.catalog[e.type_code].is_symmetric:
                out.append(e)
        out.sort(key=lambda e: (e.type_code, e.other(pid)))
        return out

    def _canonical(self, a: str, b: str, rtype: RelationshipType) -> Tuple[str, str]:
        if rtype.is_symmetric and b < a:
            return b, a
        return a, b

    def edge_between(self, a: str, b: str, type_code: str) -> Optional[RelationshipEdge]:
        rtype = get_type(type_code, self.catalog)
        a, b = self._canonical(a, b, rtype)
        eid = self._by_key.get((a, b, type_code))
        return self.edges.get(eid) if eid else None

    def edges_between(self, a: str, b: str) -> List[RelationshipEdge]:
        out = []
        for e in self.get_edges(a):
            if e.other(a) == b:
                out.append(e)
        return out

    # --- persons ----------------------------------------------------------------
    def _person_params(self, p: Person) -> tuple:
        return (
            p.id,
            p.first_name,
            p.last_name,
            p.maiden_name,
            p.middle_name,
            p.nickname,
            p.gender,
            _dict_to_json(p.birth_date.to_dict() if p.birth_date else None),
            _dict_to_json(p.birth_place.to_dict() if p.birth_place else None),
            _dict_to_json(p.death_date.to_dict() if p.death_date else None),
            _dict_to_json(p.death_place.to_dict() if p.death_place else None),
            1 if p.is_living else 0,
            p.email,
            p.phone,
            _dict_to_json(p.current_place.to_dict() if p.current_place else None),
            p.merged_into,
        )

    def _write_person(self, cur: sqlite3.Cursor, p: Person) -> None:
        cur.execute(
            "INSERT OR REPLACE INTO persons(id, first_name, last_name, maiden_name, middle_name, nickname, gender, birth_date_json, birth_place_json, death_date_json, death_place_json, is_living, email, phone, current_place_json, merged_into) VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            self._person_params(p),
        )

    def add_person(self, person: Person) -> Person:
        if person.gender not in GENDERS and person.gender is not None:
            raise ValueError(f"gender must be one of {GENDERS} or None, got {person.gender!r}")
        with self._lock:
            with self._conn:
                self._write_person(self._conn.cursor(), person)
            self.persons[person.id] = person
        return person

    def get_person(self, pid: str) -> Optional[Person]:
        return self.persons.get(pid)

    def require_person(self, pid: str) -> Person:
        p = self.persons.get(pid)
        if p is None:
            raise PersonNotFound(pid)
        return p

    def list_persons(self, include_merged: bool = False) -> List[Person]:
        return [p for p in self.persons.values() if include_merged or not p.merged_into]

    def update_person(self, person: Person) -> Person:
        if person.id not in self.persons:
            raise PersonNotFound(person.id)
        return self.add_person(person)

    def delete_person(self, pid: str) -> bool:
        """Delete a person that has no relationships left."""
        if pid not in self.persons:
            return False
        edge_count = len(self._edges_by_person.get(pid, ()))
        if edge_count:
            raise PersonInUse(pid, edge_count)
        with self._lock:
            with self._conn:
                self._conn.execute("DELETE FROM persons WHERE id = ?", (pid,))
            del self.persons[pid]
        self.cache.invalidate(pid)
        return True

    # --- edges ------------------------------------------------------------------
    def _closure(self, endpoints: Iterable[str], deep: bool) -> Set[str]:
        keys: Set[str] = set(endpoints)
        if not deep:
            return keys
        for pid in list(keys):
            keys.update(h.person for h in self.traversal.ancestors(pid, self.config.cycle_check_depth))
            keys.update(h.person for h in self.traversal.descendants(pid, self.config.cycle_check_depth))
        return keys

    def _normalize_spec(self, spec: EdgeSpec) -> Tuple[str, str, RelationshipType, Dict[str, Any]]:
        rtype = get_type(spec.type_code, self.catalog)
        for pid in (spec.person_a, spec.person_b):
            self.require_person(pid)
        if spec.person_a == spec.person_b:
            raise CycleDetected(spec.person_a, spec.person_b, (spec.person_a,))
        quals = validate_qualifiers(rtype, dict(spec.qualifiers or {}))
        a, b = self._canonical(spec.person_a, spec.person_b, rtype)
        return a, b, rtype, quals

    def _check_parent_slot(self, parent: str, child: str, extra_bio: Mapping[str, List[str]]) -> None:
        """A child has at most two biological parents and one per known gender."""
        existing = [e for e in self.biological_parent_edges(child) if e.person_a != parent]
        existing_ids = [e.person_a for e in existing] + [p for p in extra_bio.get(child, []) if p != parent]
        if len(existing_ids) >= 2:
            edge_id = existing[0].id if existing else ""
            raise ParentConflict(child, parent, edge_id, "child already has two biological parents")
        gender = self.persons[parent].gender
        if gender is None:
            return
        for pid in existing_ids:
            if self.persons[pid].gender == gender:
                edge_id = self._by_key.get((pid, child, "parent"), "")
                which = "father" if gender == "M" else "mother"
                raise ParentConflict(child, parent, edge_id, f"child already has a biological {which}")

    def _plan_edges(self, normalized: List[Tuple[str, str, RelationshipType, Dict[str, Any]]], idempotent: bool) -> _Plan:
        plan = _Plan()
        planned: Dict[Tuple[str, str, str], str] = {}
        extra_parents: Dict[str, List[str]] = {}
        extra_bio: Dict[str, List[str]] = {}
        for a, b, rtype, quals in normalized:
            key = (a, b, rtype.code)
            existing = self._by_key.get(key) or planned.get(key)
            if existing:
                if not idempotent:
                    raise DuplicateEdge(existing)
                logging.info("edge %s %s %s already exists as %s", a, rtype.code, b, existing)
                plan.ids.append(existing)
                continue
            if rtype.category == PARENT_CHILD:
                parent, child = (a, b) if rtype.code == "parent" else (b, a)
                path = self.traversal.is_ancestor(child, parent, self.config.cycle_check_depth, extra_parents=extra_parents or None)
                if path:
                    raise CycleDetected(parent, child, path)
                if quals.get("halfness", "none") == "none":
                    self._check_parent_slot(parent, child, extra_bio)
                    extra_bio.setdefault(child, []).append(parent)
                extra_parents.setdefault(child, []).append(parent)

            pair_id = _new_id()
            primary = RelationshipEdge(person_a=a, person_b=b, type_code=rtype.code, pair_id=pair_id, **quals)
            plan.rows.append(primary)
            plan.ids.append(primary.id)
            planned[key] = primary.id
            inverse_code = rtype.default_inverse_code
            if rtype.is_directed and inverse_code and inverse_code != rtype.code:
                inverse = replace(primary, id=_new_id(), person_a=b, person_b=a, type_code=inverse_code)
                plan.rows.append(inverse)
                planned[(b, a, inverse_code)] = inverse.id
            plan.endpoints.update((a, b))
        return plan

    def _edge_params(self, e: RelationshipEdge) -> tuple:
        return (
            e.id,
            e.pair_id,
            e.person_a,
            e.person_b,
            e.type_code,
            e.halfness,
            1 if e.in_law else 0,
            1 if e.is_ex else 0,
            e.cousin_degree,
            e.cousin_removed,
            e.marriage_date.to_iso() if e.marriage_date else None,
            e.divorce_date.to_iso() if e.divorce_date else None,
            e.lineage,
            e.created_at.isoformat(),
        )

    def _write_edge(self, cur: sqlite3.Cursor, e: RelationshipEdge) -> None:
        cur.execute(
            "INSERT OR REPLACE INTO edges(id, pair_id, person_a, person_b, type_code, halfness, in_law, is_ex, cousin_degree, cousin_removed, marriage_date, divorce_date, lineage, created_at) VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            self._edge_params(e),
        )

    def add_edge(self, a: str, b: str, type_code: str, idempotent: bool = True, **qualifiers: Any) -> str:
        """Add "a is the type_code of b" and its inverse; return the edge id.

        Re-adding an existing edge returns the existing id (or raises
        DuplicateEdge when ``idempotent`` is False).
        """
        return self.add_edges([EdgeSpec(a, b, type_code, qualifiers)], idempotent=idempotent)[0]

    def add_edges(self, specs: Iterable[EdgeSpec], idempotent: bool = True, bridge: Optional[BridgeRequest] = None) -> List[str]:
        """Add several edges atomically: either all are written or none.

        When ``bridge`` is given its row is written in the same transaction,
        so an accepted bridge request and its edges commit together.
        """
        specs = [s if isinstance(s, EdgeSpec) else EdgeSpec(*s) for s in specs]
        normalized = [self._normalize_spec(s) for s in specs]
        deep = any(rtype.category == PARENT_CHILD for _, _, rtype, _ in normalized)
        endpoints = {pid for a, b, _, _ in normalized for pid in (a, b)}

        deadline = time.monotonic() + self.config.lock_timeout
        while time.monotonic() < deadline:
            keys = self._closure(endpoints, deep)
            with self._subtree_locks.hold(keys):
                if not self._closure(endpoints, deep) <= keys:
                    # another writer grew the subtree between snapshot and lock
                    continue
                plan = self._plan_edges(normalized, idempotent)
                with self._lock:
                    with self._conn:
                        cur = self._conn.cursor()
                        for row in plan.rows:
                            self._write_edge(cur, row)
                        if bridge is not None:
                            self._write_bridge(cur, bridge)
                    for row in plan.rows:
                        self.edges[row.id] = row
                        self._index_edge(row)
                    if bridge is not None:
                        self.bridges[bridge.id] = bridge
                for pid in plan.endpoints:
                    self.cache.invalidate(pid)
            break
        else:
            raise LockTimeout(sorted(endpoints), self.config.lock_timeout)

        for row in plan.rows:
            if row.id in plan.ids:
                self.events.emit(RELATIONSHIP_ADDED, {"edge_id": row.id, "person_a": row.person_a, "person_b": row.person_b, "type_code": row.type_code})
        return plan.ids

    def check_edges(self, specs: Iterable[EdgeSpec]) -> List[RelationshipEdge]:
        """Dry run of add_edges against committed state; raises what add_edges would.

        Returns the rows that would be written (existing edges are skipped).
        """
        specs = [s if isinstance(s, EdgeSpec) else EdgeSpec(*s) for s in specs]
        return self._plan_edges([self._normalize_spec(s) for s in specs], idempotent=True).rows

    def _pair_rows(self, edge: RelationshipEdge) -> List[RelationshipEdge]:
        if not edge.pair_id:
            return [edge]
        rows = []
        for eid in self._edges_by_person.get(edge.person_a, ()):
            e = self.edges.get(eid)
            if e is not None and e.pair_id == edge.pair_id:
                rows.append(e)
        return rows

    def remove_edge(self, edge_id: str) -> bool:
        """Remove an edge together with its stored inverse."""
        edge = self.edges.get(edge_id)
        if edge is None:
            return False
        with self._subtree_locks.hold((edge.person_a, edge.person_b)):
            rows = self._pair_rows(edge)
            with self._lock:
                with self._conn:
                    for row in rows:
                        self._conn.execute("DELETE FROM edges WHERE id = ?", (row.id,))
                for row in rows:
                    self.edges.pop(row.id, None)
                    self._unindex_edge(row)
            self.cache.invalidate(edge.person_a)
            self.cache.invalidate(edge.person_b)
        self.events.emit(RELATIONSHIP_REMOVED, {"edge_id": edge.id, "person_a": edge.person_a, "person_b": edge.person_b, "type_code": edge.type_code})
        return True

    def update_edge(self, edge_id: str, **qualifiers: Any) -> RelationshipEdge:
        """Change qualifiers on an edge and its inverse."""
        edge = self.edges.get(edge_id)
        if edge is None:
            raise EdgeNotFound(edge_id)
        rtype = get_type(edge.type_code, self.catalog)
        quals = validate_qualifiers(rtype, qualifiers)
        with self._subtree_locks.hold((edge.person_a, edge.person_b)):
            if rtype.category == PARENT_CHILD and quals.get("halfness") == "none" and not edge.is_biological:
                parent, child = (edge.person_a, edge.person_b) if edge.type_code == "parent" else (edge.person_b, edge.person_a)
                self._check_parent_slot(parent, child, {})
            old_rows = self._pair_rows(edge)
            rows = [replace(row, **quals) for row in old_rows]
            with self._lock:
                with self._conn:
                    cur = self._conn.cursor()
                    for row in rows:
                        self._write_edge(cur, row)
                for row in old_rows:
                    self._unindex_edge(row)
                for row in rows:
                    self.edges[row.id] = row
                    self._index_edge(row)
            self.cache.invalidate(edge.person_a)
            self.cache.invalidate(edge.person_b)
        return self.edges[edge_id]

    # --- merges -----------------------------------------------------------------
    def merge_persons(self, keep_id: str, merge_id: str, merged_by: Optional[str] = None, duplicate: Optional[PotentialDuplicate] = None) -> MergeResult:
        """Fold ``merge_id`` into ``keep_id``.

        Relationships are re-pointed to the kept profile (self-edges and
        duplicates dropped), empty fields on the kept profile are filled from
        the merged one, and the merged profile is kept with ``merged_into``
        set. Everything commits in one transaction or not at all, including
        the resolved ``duplicate`` review record when one is given.
        """
        keep = self.require_person(keep_id)
        merge = self.require_person(merge_id)
        if keep_id == merge_id:
            raise MergeConflict("cannot merge a profile into itself", person_id=keep_id)
        for p in (keep, merge):
            if p.merged_into:
                raise MergeConflict(f"profile {p.id} was already merged into {p.merged_into}", person_id=p.id)

        keys = self._closure((keep_id, merge_id), deep=True)
        with self._subtree_locks.hold(keys):
            result, new_rows, old_rows = self._plan_merge(keep, merge)
            kept = replace(keep)
            for name in MERGEABLE_FIELDS:
                if getattr(kept, name) in (None, "") and getattr(merge, name) not in (None, ""):
                    setattr(kept, name, getattr(merge, name))
                    result.fields_merged.append(name)
            if kept.death_date is not None:
                kept.is_living = False
            merged = replace(merge, merged_into=keep_id)

            with self._lock:
                with self._conn:
                    cur = self._conn.cursor()
                    for row in old_rows:
                        cur.execute("DELETE FROM edges WHERE id = ?", (row.id,))
                    for row in new_rows:
                        self._write_edge(cur, row)
                    self._write_person(cur, kept)
                    self._write_person(cur, merged)
                    cur.execute(
                        "INSERT INTO merge_history(id, kept_id, merged_id, duplicate_id, merged_by, data_json, created_at) VALUES(?, ?, ?, ?, ?, ?, ?)",
                        (_new_id(), keep_id, merge_id, duplicate.id if duplicate else None, merged_by, _dict_to_json(result.to_dict()), utcnow().isoformat()),
                    )
                    if duplicate is not None:
                        self._write_duplicate(cur, duplicate)
                for row in old_rows:
                    self.edges.pop(row.id, None)
                    self._unindex_edge(row)
                for row in new_rows:
                    self.edges[row.id] = row
                    self._index_edge(row)
                self.persons[keep_id] = kept
                self.persons[merge_id] = merged
                if duplicate is not None:
                    self.duplicates[duplicate.id] = duplicate
            self.cache.clear()
        logging.info("merged %s into %s: %d transferred, %d dropped", merge_id, keep_id, result.relationships_transferred, result.relationships_dropped)
        return result

    def _plan_merge(self, keep: Person, merge: Person) -> Tuple[MergeResult, List[RelationshipEdge], List[RelationshipEdge]]:
        keep_id, merge_id = keep.id, merge.id
        if self.traversal.is_ancestor(keep_id, merge_id, self.config.cycle_check_depth):
            raise MergeConflict(f"{keep_id} is an ancestor of {merge_id}; merging would create a cycle", person_id=keep_id)
        if self.traversal.is_ancestor(merge_id, keep_id, self.config.cycle_check_depth):
            raise MergeConflict(f"{merge_id} is an ancestor of {keep_id}; merging would create a cycle", person_id=merge_id)
        if keep.gender and merge.gender and keep.gender != merge.gender:
            raise MergeConflict(f"profiles {keep_id} and {merge_id} have different genders", person_id=merge_id)

        result = MergeResult(kept_id=keep_id, merged_id=merge_id)
        old_rows = [self.edges[eid] for eid in self._edges_by_person.get(merge_id, ())]
        old_ids = {e.id for e in old_rows}
        taken = {k for k, eid in self._by_key.items() if eid not in old_ids}
        new_rows: List[RelationshipEdge] = []
        seen_pairs: Set[str] = set()
        for row in old_rows:
            a = keep_id if row.person_a == merge_id else row.person_a
            b = keep_id if row.person_b == merge_id else row.person_b
            rtype = self.catalog[row.type_code]
            a, b = self._canonical(a, b, rtype)
            first_of_pair = row.pair_id not in seen_pairs
            seen_pairs.add(row.pair_id)
            if a == b or (a, b, row.type_code) in taken:
                if first_of_pair:
                    result.relationships_dropped += 1
                continue
            taken.add((a, b, row.type_code))
            new_rows.append(replace(row, person_a=a, person_b=b))
            if first_of_pair:
                result.relationships_transferred += 1

        # biological parent slots after the merge
        bio: Dict[str, Dict[str, RelationshipEdge]] = {}
        for e in list(self.edges.values()) + new_rows:
            if e.id in old_ids or e.type_code != "parent" or not e.is_biological:
                continue
            bio.setdefault(e.person_b, {})[e.person_a] = e
        for child, parents in bio.items():
            if len(parents) > 2:
                edge = sorted(parents.values(), key=lambda e: e.id)[0]
                raise MergeConflict(f"{child} would have {len(parents)} biological parents", edge=edge, person_id=child)
            genders = [(self.persons[p].gender if p != keep_id else (keep.gender or merge.gender), e) for p, e in parents.items()]
            known = [g for g, _ in genders if g]
            if len(known) != len(set(known)):
                edge = next(e for g, e in genders if g and known.count(g) > 1)
                raise MergeConflict(f"{child} would have two biological parents of the same gender", edge=edge, person_id=child)
        return result, new_rows, old_rows

    def merge_history(self) -> List[Dict[str, Any]]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute("SELECT * FROM merge_history ORDER BY created_at")
            rows = cur.fetchall()
        out = []
        for row in rows:
            d = dict(row)
            d["data"] = _json_to_dict(d.pop("data_json"))
            out.append(d)
        return out

    # --- duplicate review records ----------------------------------------------
    def _write_duplicate(self, cur: sqlite3.Cursor, dup: PotentialDuplicate) -> None:
        cur.execute(
            "INSERT OR REPLACE INTO potential_duplicates(id, profile_a, profile_b, data_json, status) VALUES(?, ?, ?, ?, ?)",
            (dup.id, dup.profile_a, dup.profile_b, _dict_to_json(dup.to_dict()), dup.status),
        )

    def save_duplicate(self, dup: PotentialDuplicate) -> PotentialDuplicate:
        with self._lock:
            with self._conn:
                self._write_duplicate(self._conn.cursor(), dup)
            self.duplicates[dup.id] = dup
        return dup

    def get_duplicate(self, dup_id: str) -> Optional[PotentialDuplicate]:
        return self.duplicates.get(dup_id)

    def list_duplicates(self, status: Optional[str] = None) -> List[PotentialDuplicate]:
        return [d for d in self.duplicates.values() if status is None or d.status == status]

    def duplicate_pairs(self) -> Set[str]:
        return {d.pair_key for d in self.duplicates.values()}

    # --- bridge requests ---------------------------------------------------------
    def _write_bridge(self, cur: sqlite3.Cursor, req: BridgeRequest) -> None:
        cur.execute(
            "INSERT OR REPLACE INTO bridge_requests(id, requester, target, data_json, status) VALUES(?, ?, ?, ?, ?)",
            (req.id, req.requester, req.target, _dict_to_json(req.to_dict()), req.status),
        )

    def save_bridge(self, req: BridgeRequest) -> BridgeRequest:
        with self._lock:
            with self._conn:
                self._write_bridge(self._conn.cursor(), req)
            self.bridges[req.id] = req
        return req

    def get_bridge(self, request_id: str) -> Optional[BridgeRequest]:
        return self.bridges.get(request_id)

    def list_bridges(self, person: Optional[str] = None, status: Optional[str] = None) -> List[BridgeRequest]:
        out = []
        for r in self.bridges.values():
            if person is not None and person not in (r.requester, r.target):
                continue
            if status is not None and r.status != status:
                continue
            out.append(r)
        out.sort(key=lambda r: r.created_at)
        return out

    def save_block(self, user_id: str, blocked_user_id: str, reason: Optional[str] = None) -> None:
        with self._lock:
            with self._conn:
                self._conn.execute(
                    "INSERT OR REPLACE INTO bridge_blocks(user_id, blocked_user_id, reason, created_at) VALUES(?, ?, ?, ?)",
                    (user_id, blocked_user_id, reason, utcnow().isoformat()),
                )
            self.blocks[(user_id, blocked_user_id)] = reason

    def is_blocked(self, a: str, b: str) -> bool:
        return (a, b) in self.blocks or (b, a) in self.blocks

