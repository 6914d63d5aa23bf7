"""Duplicate profile detection and the review queue.

``score(a, b)`` combines per-signal similarities in [0, 1] into a weighted
sum normalized by the total weight of the profile in use (living or deceased),
so missing data lowers confidence instead of being ignored. Every signal that
fired is reported in ``match_reasons`` with its weight and contribution.

``scan`` proposes pairs, it never merges. A merge only happens through
``resolve(..., "confirm")``, one reviewer action per pair: concurrent
confirmations of the same pair are serialized and the later one sees the
terminal record and returns it unchanged.
"""
from __future__ import annotations
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
import logging
import re
import threading

from .config import Config
from .errors import DuplicateNotFound, MergeConflict
from .events import PROFILES_MERGED, EventBus
from .fs import json_load, json_save, remove_file
from .locks import KeyedLocks
from .models import (
    DUPLICATE_CONFIRMED,
    DUPLICATE_PENDING,
    DUPLICATE_REJECTED,
    CDate,
    Person,
    Place,
    PotentialDuplicate,
    pair_key,
    utcnow,
)
from .search import name_key, name_similarity

CONFIRM = "confirm"
REJECT = "reject"

CHECKPOINT_FILE = "duplicate_scan.json"


class ScanReport(list):
    """Duplicates created by a scan; ``cancelled`` and ``pairs_checked`` describe the run."""

    cancelled: bool = False
    pairs_checked: int = 0


def date_similarity(a: Optional[CDate], b: Optional[CDate], scores: Dict[str, float], window: int) -> Optional[float]:
    """Exact day > same month > same year > within ``window`` years; None if either is unknown."""
    if a is None or b is None or a.year is None or b.year is None:
        return None
    if a.year == b.year:
        if a.month and a.month == b.month:
            if a.day and a.day == b.day:
                return scores["exact"]
            return scores["month"]
        return scores["year"]
    if abs(a.year - b.year) <= window:
        return scores["close"]
    return 0.0


def place_similarity(a: Optional[Place], b: Optional[Place], floor: float) -> Optional[float]:
    sa = a.to_simple() if a else None
    sb = b.to_simple() if b else None
    if not sa or not sb:
        return None
    s = name_similarity(sa, sb)
    return s if s >= floor else 0.0


def _digits(s: Optional[str]) -> str:
    return re.sub(r"\D", "", s or "")


class DuplicateDetector:
    def __init__(self, store, config: Optional[Config] = None, events: Optional[EventBus] = None) -> None:
        self.store = store
        self.config = config or store.config
        self.events = events or store.events
        self._pair_locks = KeyedLocks(self.config.lock_timeout)
        self.checkpoint_path = Path(store.root) / CHECKPOINT_FILE

    # --- scoring ----------------------------------------------------------------
    def _name(self, a: Optional[str], b: Optional[str]) -> Optional[float]:
        if not a or not b:
            return None
        s = name_similarity(a, b)
        return s if s >= self.config.fuzzy_name_floor else 0.0

    def shared_relatives(self, a: str, b: str) -> Set[str]:
        traversal = self.store.traversal
        shared = traversal.immediate_family(a) & traversal.immediate_family(b)
        shared.difference_update((a, b))
        return shared

    def _signals(self, pa: Person, pb: Person, deceased: bool) -> Dict[str, float]:
        cfg = self.config
        signals: Dict[str, Optional[float]] = {
            "middle_name": self._name(pa.middle_name, pb.middle_name),
            "maiden_name": self._name(pa.maiden_name, pb.maiden_name),
            "birth_date": date_similarity(pa.birth_date, pb.birth_date, cfg.date_scores, cfg.close_year_window),
            "birth_place": place_similarity(pa.birth_place, pb.birth_place, cfg.fuzzy_name_floor),
        }
        # a nickname on either profile may stand for the other's first name
        first = [self._name(x, y) for x in (pa.first_name, pa.nickname) for y in (pb.first_name, pb.nickname)]
        known = [s for s in first if s is not None]
        signals["first_name"] = max(known) if known else None
        last = [self._name(pa.last_name, pb.last_name)]
        # a married name on one profile may be the maiden name on the other
        last.append(self._name(pa.maiden_name, pb.last_name))
        last.append(self._name(pa.last_name, pb.maiden_name))
        known = [s for s in last if s is not None]
        signals["last_name"] = max(known) if known else None
        if deceased:
            signals["death_date"] = date_similarity(pa.death_date, pb.death_date, cfg.date_scores, cfg.close_year_window)
            signals["death_place"] = place_similarity(pa.death_place, pb.death_place, cfg.fuzzy_name_floor)
        else:
            contact = None
            if pa.email and pb.email:
                contact = 1.0 if pa.email.strip().lower() == pb.email.strip().lower() else 0.0
            if _digits(pa.phone) and _digits(pb.phone):
                same_phone = 1.0 if _digits(pa.phone)[-10:] == _digits(pb.phone)[-10:] else 0.0
                contact = max(contact or 0.0, same_phone)
            signals["contact"] = contact
        return {k: v for k, v in signals.items() if v is not None}

    def score(self, a: str, b: str) -> Tuple[float, Dict[str, Any]]:
        """Return (confidence, match_reasons) for the profile pair."""
        pa = self.store.require_person(a)
        pb = self.store.require_person(b)
        shared = self.shared_relatives(a, b)
        return self.score_persons(pa, pb, len(shared))

    def score_persons(self, pa: Person, pb: Person, shared_count: int) -> Tuple[float, Dict[str, Any]]:
        cfg = self.config
        deceased = not pa.is_living and not pb.is_living
        weights = cfg.deceased_weights if deceased else cfg.living_weights
        total = sum(weights.values())
        signals = self._signals(pa, pb, deceased)
        cap = max(cfg.shared_relatives_cap, 1)
        signals["shared_relatives"] = min(shared_count, cap) / cap

        reasons: Dict[str, Any] = {}
        confidence = 0.0
        for name, weight in weights.items():
            value = signals.get(name)
            if not value or not total:
                continue
            contribution = weight * value / total
            confidence += contribution
            reasons[name] = {"score": round(value, 4), "weight": weight, "contribution": round(contribution, 4)}
        if shared_count:
            reasons.setdefault("shared_relatives", {})["count"] = shared_count

        if pa.gender and pb.gender and pa.gender != pb.gender:
            confidence *= cfg.gender_conflict_factor
            reasons["gender_conflict"] = {"factor": cfg.gender_conflict_factor}
        confidence = max(0.0, min(1.0, confidence))
        reasons["profile"] = "deceased" if deceased else "living"
        return round(confidence, 4), reasons

    def confidence_level(self, confidence: float) -> str:
        if confidence >= 0.95:
            return "very_high"
        if confidence >= self.config.duplicate_high_confidence:
            return "high"
        if confidence >= self.config.duplicate_min_confidence:
            return "medium"
        return "low"

    @staticmethod
    def describe_reasons(dup: PotentialDuplicate) -> List[str]:
        """Human readable lines, strongest signal first."""
        lines = []
        signals = [(k, v) for k, v in dup.match_reasons.items() if isinstance(v, dict) and "contribution" in v]
        for name, info in sorted(signals, key=lambda kv: -kv[1]["contribution"]):
            line = f"{name.replace('_', ' ')}: {info['score']:.2f} (+{info['contribution']:.2f})"
            if "count" in info:
                line += f", {info['count']} shared"
            lines.append(line)
        if "gender_conflict" in dup.match_reasons:
            lines.append(f"gender conflict: x{dup.match_reasons['gender_conflict']['factor']}")
        return lines

    # --- scanning ---------------------------------------------------------------
    @staticmethod
    def _block_keys(p: Person) -> Set[str]:
        keys = set()
        for n in (p.last_name, p.maiden_name):
            k = name_key(n)
            if k:
                keys.add("l:" + k[:2])
        if not keys:
            k = name_key(p.first_name)
            if k:
                keys.add("f:" + k[:2])
        return keys

    def candidate_pairs(self, persons: Iterable[Person]) -> List[Tuple[str, str]]:
        blocks: Dict[str, List[str]] = {}
        for p in persons:
            for key in self._block_keys(p):
                blocks.setdefault(key, []).append(p.id)
        pairs: Set[Tuple[str, str]] = set()
        for ids in blocks.values():
            ids = sorted(ids)
            for i, a in enumerate(ids):
                for b in ids[i + 1:]:
                    pairs.add((a, b))
        return sorted(pairs)

    def _load_checkpoint(self) -> Set[str]:
        data = json_load(self.checkpoint_path, default={}) or {}
        cleared = set(data.get("cleared", []))
        if cleared:
            logging.info("duplicate scan: resuming, %d pairs already cleared", len(cleared))
        return cleared

    def _save_checkpoint(self, cleared: Set[str]) -> None:
        json_save(self.checkpoint_path, {"cleared": sorted(cleared), "saved_at": utcnow().isoformat()})

    def scan(self, min_confidence: Optional[float] = None, cancel_event: Optional[threading.Event] = None) -> ScanReport:
        """Score candidate pairs and record those at or above min_confidence.

        Cancellation is checked between pairs; progress is checkpointed so a
        later scan skips pairs that were already cleared.
        """
        if min_confidence is None:
            min_confidence = self.config.duplicate_min_confidence
        report = ScanReport()
        persons = [p for p in self.store.list_persons() if not p.merged_into]
        cleared = self._load_checkpoint()
        known = self.store.duplicate_pairs()
        since_save = 0

        for a, b in self.candidate_pairs(persons):
            if cancel_event is not None and cancel_event.is_set():
                self._save_checkpoint(cleared)
                report.cancelled = True
                logging.info("duplicate scan cancelled after %d pairs", report.pairs_checked)
                return report
            key = pair_key(a, b)
            if key in cleared or key in known or self.store.edges_between(a, b):
                continue
            report.pairs_checked += 1
            confidence, reasons = self.score(a, b)
            if confidence >= min_confidence:
                dup = self._record(a, b, confidence, reasons)
                if dup is not None:
                    report.append(dup)
            cleared.add(key)
            since_save += 1
            if since_save >= self.config.checkpoint_interval:
                self._save_checkpoint(cleared)
                since_save = 0

        remove_file(self.checkpoint_path)
        logging.info("duplicate scan: %d pairs checked, %d candidates", report.pairs_checked, len(report))
        return report

    def _record(self, a: str, b: str, confidence: float, reasons: Dict[str, Any]) -> Optional[PotentialDuplicate]:
        key = pair_key(a, b)
        with self._pair_locks.hold([key]):
            if key in self.store.duplicate_pairs():
                return None
            pa, pb = self.store.require_person(a), self.store.require_person(b)
            shared = reasons.get("shared_relatives", {}).get("count", 0)
            dup = PotentialDuplicate(
                profile_a=a,
                profile_b=b,
                confidence_score=confidence,
                match_reasons=reasons,
                shared_relatives_count=shared,
                is_deceased_pair=not pa.is_living and not pb.is_living,
            )
            return self.store.save_duplicate(dup)

    # --- review -------------------------------------------------------------------
    _SORT_KEYS = {
        "confidence": lambda d: (-d.confidence_score, d.id),
        "shared_relatives": lambda d: (-d.shared_relatives_count, -d.confidence_score, d.id),
        "created": lambda d: (d.created_at, d.id),
    }

    def queue(
        self,
        status: Optional[str] = DUPLICATE_PENDING,
        min_confidence: Optional[float] = None,
        max_confidence: Optional[float] = None,
        deceased_only: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
        sort_by: str = "confidence",
    ) -> List[PotentialDuplicate]:
        """Review queue, strongest candidates first by default."""
        if sort_by not in self._SORT_KEYS:
            raise ValueError(f"sort_by must be one of {sorted(self._SORT_KEYS)}, got {sort_by!r}")
        out = []
        for d in self.store.list_duplicates(status):
            if min_confidence is not None and d.confidence_score < min_confidence:
                continue
            if max_confidence is not None and d.confidence_score > max_confidence:
                continue
            if deceased_only and not d.is_deceased_pair:
                continue
            out.append(d)
        out.sort(key=self._SORT_KEYS[sort_by])
        end = None if limit is None else offset + limit
        return out[offset:end]

    def resolve(self, dup_id: str, action: str, reviewer: Optional[str] = None, kept_profile_id: Optional[str] = None, notes: Optional[str] = None) -> PotentialDuplicate:
        """Apply a reviewer decision; returns the (possibly already) resolved record.

        A failed merge leaves the record pending with ``last_error`` set and
        re-raises the MergeConflict.
        """
        if action not in (CONFIRM, REJECT):
            raise ValueError(f"action must be {CONFIRM!r} or {REJECT!r}, got {action!r}")
        dup = self.store.get_duplicate(dup_id)
        if dup is None:
            raise DuplicateNotFound(dup_id)

        with self._pair_locks.hold([dup.pair_key]):
            dup = self.store.get_duplicate(dup_id)
            if dup.is_terminal:
                logging.info("duplicate %s already %s; ignoring %s by %s", dup_id, dup.status, action, reviewer)
                return dup
            reviewed = dict(reviewed_by=reviewer, reviewed_at=utcnow(), resolution_notes=notes, last_error=None)

            if action == REJECT:
                return self.store.save_duplicate(replace(dup, status=DUPLICATE_REJECTED, **reviewed))

            keep_id = kept_profile_id or dup.profile_a
            if keep_id not in (dup.profile_a, dup.profile_b):
                raise ValueError(f"kept profile {keep_id} is not part of duplicate {dup_id}")
            merge_id = dup.profile_b if keep_id == dup.profile_a else dup.profile_a
            confirmed = replace(dup, status=DUPLICATE_CONFIRMED, kept_profile_id=keep_id, **reviewed)
            try:
                result = self.store.merge_persons(keep_id, merge_id, merged_by=reviewer, duplicate=confirmed)
            except MergeConflict as exc:
                logging.warning("duplicate %s: merge refused: %s", dup_id, exc)
                self.store.save_duplicate(replace(dup, last_error=str(exc)))
                raise

        self.events.emit(
            PROFILES_MERGED,
            {
                "kept_id": keep_id,
                "merged_id": merge_id,
                "duplicate_id": dup_id,
                "relationships_transferred": result.relationships_transferred,
                "relationships_dropped": result.relationships_dropped,
            },
        )
        return confirmed
