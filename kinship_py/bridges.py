"""Bridge requests between separate trees.

A bridge request is a claim "requester is the <claimed_relationship> of
target" (the same reading as ``GraphStore.add_edge(requester, target, code)``).

Lifecycle: pending -> accepted | rejected | expired | withdrawn. A pending
request past ``expires_at`` is expired by ``expire_stale`` or by the next
``respond``; it can never be accepted afterwards. Acceptance writes the edge
(and its inverse) and the accepted request row in one transaction. When the
graph refuses the edge, the request stays pending with ``last_error`` set and
the caller gets a ``MergeConflict`` naming the cause.
"""
from __future__ import annotations
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
import logging
import re

from .catalog import get_type, validate_qualifiers
from .config import Config
from .errors import BridgeError, BridgeExpired, BridgeNotFound, GraphError, MergeConflict
from .locks import KeyedLocks
from .models import (
    BRIDGE_ACCEPTED,
    BRIDGE_EXPIRED,
    BRIDGE_PENDING,
    BRIDGE_REJECTED,
    BRIDGE_WITHDRAWN,
    BridgeRequest,
    Person,
    pair_key,
    utcnow,
)
from .search import name_similarity
from .storage import EdgeSpec

_YEAR = re.compile(r"\b(1[0-9]{3}|20[0-9]{2})\b")


def parse_hint(hint: Optional[str]):
    """Split a free-text ancestor hint into (name tokens, year or None)."""
    if not hint:
        return [], None
    m = _YEAR.search(hint)
    year = int(m.group(1)) if m else None
    text = _YEAR.sub(" ", hint)
    names = [t for t in re.split(r"[\s,.;()]+", text) if len(t) > 1 and not t.isdigit()]
    return names, year


class BridgeMatcher:
    def __init__(self, store, classifier, config: Optional[Config] = None, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.store = store
        self.classifier = classifier
        self.config = config or store.config
        self.clock = clock or utcnow
        self._pair_locks = KeyedLocks(self.config.lock_timeout)

    # --- support --------------------------------------------------------------
    def _hint_score(self, person: Person, names: List[str], year: Optional[int]) -> float:
        fields = [n for n in (person.first_name, person.last_name, person.maiden_name, person.middle_name, person.nickname) if n]
        if not fields or not names:
            return 0.0
        name_score = sum(max(name_similarity(tok, f) for f in fields) for tok in names) / len(names)
        if year is None:
            return name_score
        born = person.birth_date.year if person.birth_date else None
        if born is None:
            return name_score * 0.7
        year_score = 1.0 if abs(born - year) <= self.config.close_year_window else 0.0
        return name_score * 0.7 + year_score * 0.3

    def hint_matches(self, target: str, hint: Optional[str], limit: int = 5) -> List[Dict[str, Any]]:
        """People in target's tree consistent with the hinted common ancestor."""
        names, year = parse_hint(hint)
        if not names:
            return []
        matches = []
        for pid in sorted(self.store.traversal.tree_of(target)):
            person = self.store.get_person(pid)
            if person is None or person.merged_into:
                continue
            score = self._hint_score(person, names, year)
            if score >= self.config.bridge_hint_min_score:
                matches.append({"person_id": pid, "name": person.full_name, "score": round(score, 3)})
        matches.sort(key=lambda m: (-m["score"], m["person_id"]))
        return matches[:limit]

    def assess(self, requester: str, target: str, claimed_relationship: str, hint: Optional[str] = None, qualifiers: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Evidence for a claim; never writes to the graph."""
        traversal = self.store.traversal
        depth = self.config.in_law_depth
        shared = (traversal.tree_of(requester, depth) & traversal.tree_of(target, depth)) - {requester, target}
        current = self.classifier.classify(requester, target)
        support: Dict[str, Any] = {
            "hint_matches": self.hint_matches(target, hint),
            "shared_relatives": len(shared),
            "already_related": current.related,
            "current_relationship": current.kind,
            "feasible": True,
            "conflict": None,
        }
        try:
            self.store.check_edges([EdgeSpec(requester, target, claimed_relationship, dict(qualifiers or {}))])
        except GraphError as exc:
            support["feasible"] = False
            support["conflict"] = exc.to_dict()
        return support

    # --- lifecycle ----------------------------------------------------------------
    def propose(self, requester: str, target: str, claimed_relationship: str, hint: Optional[str] = None, supporting_info: Optional[str] = None, qualifiers: Optional[Dict[str, Any]] = None) -> BridgeRequest:
        self.store.require_person(requester)
        self.store.require_person(target)
        if requester == target:
            raise BridgeError("cannot send a bridge request to yourself")
        rtype = get_type(claimed_relationship, self.store.catalog)
        quals = validate_qualifiers(rtype, dict(qualifiers or {}))
        if self.store.is_blocked(requester, target):
            raise BridgeError(f"bridge requests between {requester} and {target} are blocked")

        key = pair_key(requester, target)
        with self._pair_locks.hold([key]):
            for other in self.store.list_bridges(requester, BRIDGE_PENDING):
                if other.pair_key == key:
                    raise BridgeError(f"a pending request already exists for this pair: {other.id}")
            support = self.assess(requester, target, claimed_relationship, hint, quals)
            now = self.clock()
            req = BridgeRequest(
                requester=requester,
                target=target,
                claimed_relationship=claimed_relationship,
                qualifiers=dict(qualifiers or {}),
                common_ancestor_hint=hint,
                supporting_info=supporting_info,
                support=support,
                created_at=now,
                expires_at=now + timedelta(days=self.config.bridge_ttl_days),
            )
            self.store.save_bridge(req)
        logging.info("bridge %s proposed: %s is %s of %s (feasible=%s)", req.id, requester, claimed_relationship, target, support["feasible"])
        return req

    def _require(self, request_id: str) -> BridgeRequest:
        req = self.store.get_bridge(request_id)
        if req is None:
            raise BridgeNotFound(request_id)
        return req

    def _is_expired(self, req: BridgeRequest, now: datetime) -> bool:
        return req.status == BRIDGE_PENDING and req.expires_at is not None and now >= req.expires_at

    def respond(self, request_id: str, accept: bool, established_type: Optional[str] = None, responder: Optional[str] = None, message: Optional[str] = None) -> BridgeRequest:
        req = self._require(request_id)
        with self._pair_locks.hold([req.pair_key]):
            req = self._require(request_id)
            if req.status != BRIDGE_PENDING:
                raise BridgeError(f"bridge request {request_id} is already {req.status}")
            if responder is not None and responder != req.target:
                raise BridgeError(f"only {req.target} can respond to bridge request {request_id}")
            now = self.clock()
            if self._is_expired(req, now):
                self.store.save_bridge(replace(req, status=BRIDGE_EXPIRED))
                raise BridgeExpired(request_id)

            if not accept:
                rejected = replace(req, status=BRIDGE_REJECTED, responded_at=now, response_message=message)
                logging.info("bridge %s rejected", request_id)
                return self.store.save_bridge(rejected)

            type_code = established_type or req.claimed_relationship
            get_type(type_code, self.store.catalog)
            accepted = replace(
                req,
                status=BRIDGE_ACCEPTED,
                established_relationship_type=type_code,
                responded_at=now,
                response_message=message,
                last_error=None,
            )
            # qualifiers belong to the claimed type; a corrected type starts without them
            qualifiers = dict(req.qualifiers) if type_code == req.claimed_relationship else {}
            spec = EdgeSpec(req.requester, req.target, type_code, qualifiers)
            try:
                self.store.add_edges([spec], bridge=accepted)
            except GraphError as exc:
                logging.warning("bridge %s acceptance refused by the graph: %s", request_id, exc)
                self.store.save_bridge(replace(req, last_error=str(exc)))
                edge = getattr(exc, "existing_edge_id", None)
                person = getattr(exc, "child", None) or getattr(exc, "person_id", None)
                raise MergeConflict(f"bridge request {request_id} cannot be accepted: {exc}", edge=edge, person_id=person, cause=exc) from exc
        logging.info("bridge %s accepted as %s", request_id, type_code)
        return accepted

    def withdraw(self, request_id: str, requester: Optional[str] = None) -> BridgeRequest:
        req = self._require(request_id)
        with self._pair_locks.hold([req.pair_key]):
            req = self._require(request_id)
            if requester is not None and requester != req.requester:
                raise BridgeError(f"only {req.requester} can withdraw bridge request {request_id}")
            if req.status != BRIDGE_PENDING:
                raise BridgeError(f"bridge request {request_id} is already {req.status}")
            return self.store.save_bridge(replace(req, status=BRIDGE_WITHDRAWN, responded_at=self.clock()))

    def block(self, user_id: str, blocked_user_id: str, reason: Optional[str] = None) -> int:
        """Block future requests between two users; reject pending ones. Returns how many were rejected."""
        self.store.save_block(user_id, blocked_user_id, reason)
        rejected = 0
        key = pair_key(user_id, blocked_user_id)
        for req in self.store.list_bridges(user_id, BRIDGE_PENDING):
            if req.pair_key == key:
                with self._pair_locks.hold([key]):
                    self.store.save_bridge(replace(req, status=BRIDGE_REJECTED, responded_at=self.clock(), response_message="blocked"))
                rejected += 1
        return rejected

    def expire_stale(self) -> int:
        """Move every overdue pending request to expired; return how many."""
        now = self.clock()
        expired = 0
        for req in self.store.list_bridges(status=BRIDGE_PENDING):
            if not self._is_expired(req, now):
                continue
            with self._pair_locks.hold([req.pair_key]):
                current = self.store.get_bridge(req.id)
                if current is None or not self._is_expired(current, now):
                    continue
                self.store.save_bridge(replace(current, status=BRIDGE_EXPIRED))
                expired += 1
        if expired:
            logging.info("expired %d bridge request(s)", expired)
        return expired

    def list_requests(self, person: Optional[str] = None, status: Optional[str] = None, role: Optional[str] = None) -> List[BridgeRequest]:
        """Requests involving person; role 'requester' or 'target' narrows to one side."""
        if role not in (None, "requester", "target"):
            raise ValueError(f"role must be 'requester' or 'target', got {role!r}")
        out = self.store.list_bridges(person, status)
        if person is not None and role is not None:
            out = [r for r in out if getattr(r, role) == person]
        return out
