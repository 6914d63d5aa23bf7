from __future__ import annotations
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any
import re
import uuid


def _new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dt_to_str(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def _dt_from_str(s: Optional[str]) -> Optional[datetime]:
    if not s:
        return None
    if isinstance(s, datetime):
        return s
    return datetime.fromisoformat(s)


# gender stored as string everywhere: 'M', 'F' or None
GENDERS = ("M", "F")

# review statuses
DUPLICATE_PENDING = "pending"
DUPLICATE_CONFIRMED = "confirmed"
DUPLICATE_REJECTED = "rejected"
DUPLICATE_STATUSES = (DUPLICATE_PENDING, DUPLICATE_CONFIRMED, DUPLICATE_REJECTED)

BRIDGE_PENDING = "pending"
BRIDGE_ACCEPTED = "accepted"
BRIDGE_REJECTED = "rejected"
BRIDGE_EXPIRED = "expired"
BRIDGE_WITHDRAWN = "withdrawn"
BRIDGE_STATUSES = (BRIDGE_PENDING, BRIDGE_ACCEPTED, BRIDGE_REJECTED, BRIDGE_EXPIRED, BRIDGE_WITHDRAWN)

_MONTHS = {
    "JAN": 1,
    "FEB": 2,
    "MAR": 3,
    "APR": 4,
    "MAY": 5,
    "JUN": 6,
    "JUL": 7,
    "AUG": 8,
    "SEP": 9,
    "OCT": 10,
    "NOV": 11,
    "DEC": 12,
}


@dataclass
class CDate:
    year: Optional[int] = None
    month: Optional[int] = None
    day: Optional[int] = None
    precision: Optional[str] = None  # 'year'|'month'|'day'|'approx'|'before'|'after' or None

    def to_dict(self) -> Dict[str, Any]:
        return {"year": self.year, "month": self.month, "day": self.day, "precision": self.precision}

    @staticmethod
    def from_dict(d: Optional[Dict[str, Any]]) -> Optional["CDate"]:
        if not d:
            return None
        return CDate(year=d.get("year"), month=d.get("month"), day=d.get("day"), precision=d.get("precision"))

    def to_iso(self) -> Optional[str]:
        if self.year is None:
            return None
        if self.month is None:
            return f"{self.year}"
        if self.day is None:
            return f"{self.year:04d}-{self.month:02d}"
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"

    @staticmethod
    def from_string(s: Optional[str]) -> Optional["CDate"]:
        """Parse ISO ('1890', '1890-05', '1890-05-12') and GEDCOM style dates
        ('12 MAY 1890', 'ABT 1890', 'BEF 1890', 'AFT 1890')."""
        if not s:
            return None
        txt = s.strip().upper()
        if not txt:
            return None

        iso_match = re.match(r"^(\d{3,4})(?:-(\d{1,2})(?:-(\d{1,2}))?)?$", txt)
        if iso_match:
            year = int(iso_match.group(1))
            month = int(iso_match.group(2)) if iso_match.group(2) else None
            day = int(iso_match.group(3)) if iso_match.group(3) else None
            precision = "day" if day else "month" if month else "year"
            return CDate(year=year, month=month, day=day, precision=precision)

        m = re.match(r"^(?:(\d{1,2})\s+)?([A-Z]{3,9})\.?,?\s+(\d{3,4})$", txt)
        if m:
            month = _MONTHS.get(m.group(2)[:3])
            if month:
                day = int(m.group(1)) if m.group(1) else None
                return CDate(year=int(m.group(3)), month=month, day=day, precision="day" if day else "month")

        m = re.match(r"^(ABT|ABOUT|EST|CA|CIRCA)\.?\s+(\d{3,4})$", txt)
        if m:
            return CDate(year=int(m.group(2)), precision="approx")

        m = re.match(r"^(BEF|BEFORE)\s+(\d{3,4})$", txt)
        if m:
            return CDate(year=int(m.group(2)), precision="before")

        m = re.match(r"^(AFT|AFTER)\s+(\d{3,4})$", txt)
        if m:
            return CDate(year=int(m.group(2)), precision="after")

        # fallback: first 3-4 digit year in string
        m = re.search(r"(\d{3,4})", txt)
        if m:
            return CDate(year=int(m.group(1)), precision="unknown")
        return None


@dataclass
class Place:
    town: Optional[str] = None
    county: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    other: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(d: Optional[Dict[str, Any]]) -> Optional["Place"]:
        if not d:
            return None
        return Place(town=d.get("town"), county=d.get("county"), state=d.get("state"), country=d.get("country"), other=d.get("other"))

    def to_simple(self) -> Optional[str]:
        for v in (self.town, self.other, self.county, self.state, self.country):
            if v:
                return v
        return None

    @staticmethod
    def from_simple(s: Optional[str]) -> Optional["Place"]:
        if not s:
            return None
        return Place(other=s, town=s)


def _cdate(v: Any) -> Optional[CDate]:
    if isinstance(v, CDate):
        return v
    if isinstance(v, dict):
        return CDate.from_dict(v)
    if isinstance(v, str):
        return CDate.from_string(v)
    return None


def _place(v: Any) -> Optional[Place]:
    if isinstance(v, Place):
        return v
    if isinstance(v, dict):
        return Place.from_dict(v)
    if isinstance(v, str):
        return Place.from_simple(v)
    return None


@dataclass
class Person:
    id: str = field(default_factory=_new_id)
    first_name: str = ""
    last_name: str = ""
    maiden_name: Optional[str] = None
    middle_name: Optional[str] = None
    nickname: Optional[str] = None
    gender: Optional[str] = None
    birth_date: Optional[CDate] = None
    birth_place: Optional[Place] = None
    death_date: Optional[CDate] = None
    death_place: Optional[Place] = None
    is_living: bool = True
    # living-profile contact data
    email: Optional[str] = None
    phone: Optional[str] = None
    current_place: Optional[Place] = None
    merged_into: Optional[str] = None

    def __post_init__(self) -> None:
        if self.death_date is not None:
            self.is_living = False

    @property
    def full_name(self) -> str:
        return " ".join(n for n in (self.first_name, self.middle_name, self.last_name) if n)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "maiden_name": self.maiden_name,
            "middle_name": self.middle_name,
            "nickname": self.nickname,
            "gender": self.gender,
            "birth_date": self.birth_date.to_dict() if self.birth_date else None,
            "birth_place": self.birth_place.to_dict() if self.birth_place else None,
            "death_date": self.death_date.to_dict() if self.death_date else None,
            "death_place": self.death_place.to_dict() if self.death_place else None,
            "is_living": self.is_living,
            "email": self.email,
            "phone": self.phone,
            "current_place": self.current_place.to_dict() if self.current_place else None,
            "merged_into": self.merged_into,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "Person":
        """Build a Person from a dict. Dates and places may be given as
        dicts, model instances, or plain text ('1890-05-12', 'Moscow')."""
        death_date = _cdate(d.get("death_date"))
        is_living = d.get("is_living")
        if is_living is None:
            is_living = death_date is None
        return Person(
            id=d.get("id") or _new_id(),
            first_name=d.get("first_name") or "",
            last_name=d.get("last_name") or "",
            maiden_name=d.get("maiden_name"),
            middle_name=d.get("middle_name"),
            nickname=d.get("nickname"),
            gender=d.get("gender"),
            birth_date=_cdate(d.get("birth_date")),
            birth_place=_place(d.get("birth_place")),
            death_date=death_date,
            death_place=_place(d.get("death_place")),
            is_living=bool(is_living),
            email=d.get("email"),
            phone=d.get("phone"),
            current_place=_place(d.get("current_place")),
            merged_into=d.get("merged_into"),
        )


@dataclass(frozen=True)
class RelationshipType:
    code: str
    category: str  # 'parent-child' | 'union' | 'sibling-derived'
    is_directed: bool
    is_symmetric: bool
    default_inverse_code: Optional[str] = None
    description: str = ""
    labels: Dict[str, str] = field(default_factory=dict, compare=False, hash=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "category": self.category,
            "is_directed": self.is_directed,
            "is_symmetric": self.is_symmetric,
            "default_inverse_code": self.default_inverse_code,
            "description": self.description,
            "labels": dict(self.labels),
        }


# qualifier names accepted by GraphStore.add_edge
EDGE_QUALIFIERS = (
    "halfness",
    "in_law",
    "is_ex",
    "cousin_degree",
    "cousin_removed",
    "marriage_date",
    "divorce_date",
    "lineage",
)


@dataclass
class RelationshipEdge:
    """A stored edge: ``person_a`` is the ``type_code`` of ``person_b``."""

    person_a: str
    person_b: str
    type_code: str
    id: str = field(default_factory=_new_id)
    pair_id: Optional[str] = None
    halfness: str = "none"
    in_law: bool = False
    is_ex: bool = False
    cousin_degree: Optional[int] = None
    cousin_removed: Optional[int] = None
    marriage_date: Optional[CDate] = None
    divorce_date: Optional[CDate] = None
    lineage: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_biological(self) -> bool:
        return self.halfness == "none"

    def qualifiers(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in EDGE_QUALIFIERS}

    def involves(self, pid: str) -> bool:
        return pid in (self.person_a, self.person_b)

    def other(self, pid: str) -> str:
        return self.person_b if pid == self.person_a else self.person_a

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "pair_id": self.pair_id,
            "person_a": self.person_a,
            "person_b": self.person_b,
            "type_code": self.type_code,
            "halfness": self.halfness,
            "in_law": self.in_law,
            "is_ex": self.is_ex,
            "cousin_degree": self.cousin_degree,
            "cousin_removed": self.cousin_removed,
            "marriage_date": self.marriage_date.to_iso() if self.marriage_date else None,
            "divorce_date": self.divorce_date.to_iso() if self.divorce_date else None,
            "lineage": self.lineage,
            "created_at": _dt_to_str(self.created_at),
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "RelationshipEdge":
        return RelationshipEdge(
            id=d.get("id") or _new_id(),
            pair_id=d.get("pair_id"),
            person_a=d["person_a"],
            person_b=d["person_b"],
            type_code=d["type_code"],
            halfness=d.get("halfness") or "none",
            in_law=bool(d.get("in_law")),
            is_ex=bool(d.get("is_ex")),
            cousin_degree=d.get("cousin_degree"),
            cousin_removed=d.get("cousin_removed"),
            marriage_date=_cdate(d.get("marriage_date")),
            divorce_date=_cdate(d.get("divorce_date")),
            lineage=d.get("lineage"),
            created_at=_dt_from_str(d.get("created_at")) or utcnow(),
        )


@dataclass
class PotentialDuplicate:
    profile_a: str
    profile_b: str
    confidence_score: float
    match_reasons: Dict[str, Any] = field(default_factory=dict)
    shared_relatives_count: int = 0
    is_deceased_pair: bool = False
    status: str = DUPLICATE_PENDING
    id: str = field(default_factory=_new_id)
    kept_profile_id: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None
    last_error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def pair_key(self) -> str:
        return pair_key(self.profile_a, self.profile_b)

    @property
    def is_terminal(self) -> bool:
        return self.status != DUPLICATE_PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "profile_a": self.profile_a,
            "profile_b": self.profile_b,
            "confidence_score": self.confidence_score,
            "match_reasons": self.match_reasons,
            "shared_relatives_count": self.shared_relatives_count,
            "is_deceased_pair": self.is_deceased_pair,
            "status": self.status,
            "kept_profile_id": self.kept_profile_id,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": _dt_to_str(self.reviewed_at),
            "resolution_notes": self.resolution_notes,
            "last_error": self.last_error,
            "created_at": _dt_to_str(self.created_at),
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "PotentialDuplicate":
        return PotentialDuplicate(
            id=d.get("id") or _new_id(),
            profile_a=d["profile_a"],
            profile_b=d["profile_b"],
            confidence_score=float(d.get("confidence_score") or 0.0),
            match_reasons=d.get("match_reasons") or {},
            shared_relatives_count=int(d.get("shared_relatives_count") or 0),
            is_deceased_pair=bool(d.get("is_deceased_pair")),
            status=d.get("status") or DUPLICATE_PENDING,
            kept_profile_id=d.get("kept_profile_id"),
            reviewed_by=d.get("reviewed_by"),
            reviewed_at=_dt_from_str(d.get("reviewed_at")),
            resolution_notes=d.get("resolution_notes"),
            last_error=d.get("last_error"),
            created_at=_dt_from_str(d.get("created_at")) or utcnow(),
        )


@dataclass
class BridgeRequest:
    requester: str
    target: str
    claimed_relationship: str
    expires_at: datetime
    qualifiers: Dict[str, Any] = field(default_factory=dict)
    common_ancestor_hint: Optional[str] = None
    supporting_info: Optional[str] = None
    support: Dict[str, Any] = field(default_factory=dict)
    status: str = BRIDGE_PENDING
    id: str = field(default_factory=_new_id)
    established_relationship_type: Optional[str] = None
    response_message: Optional[str] = None
    last_error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    responded_at: Optional[datetime] = None

    @property
    def pair_key(self) -> str:
        return pair_key(self.requester, self.target)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "requester": self.requester,
            "target": self.target,
            "claimed_relationship": self.claimed_relationship,
            "qualifiers": self.qualifiers,
            "common_ancestor_hint": self.common_ancestor_hint,
            "supporting_info": self.supporting_info,
            "support": self.support,
            "status": self.status,
            "established_relationship_type": self.established_relationship_type,
            "response_message": self.response_message,
            "last_error": self.last_error,
            "created_at": _dt_to_str(self.created_at),
            "expires_at": _dt_to_str(self.expires_at),
            "responded_at": _dt_to_str(self.responded_at),
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "BridgeRequest":
        return BridgeRequest(
            id=d.get("id") or _new_id(),
            requester=d["requester"],
            target=d["target"],
            claimed_relationship=d["claimed_relationship"],
            qualifiers=d.get("qualifiers") or {},
            common_ancestor_hint=d.get("common_ancestor_hint"),
            supporting_info=d.get("supporting_info"),
            support=d.get("support") or {},
            status=d.get("status") or BRIDGE_PENDING,
            established_relationship_type=d.get("established_relationship_type"),
            response_message=d.get("response_message"),
            last_error=d.get("last_error"),
            created_at=_dt_from_str(d.get("created_at")) or utcnow(),
            expires_at=_dt_from_str(d.get("expires_at")),
            responded_at=_dt_from_str(d.get("responded_at")),
        )


@dataclass
class MergeResult:
    kept_id: str
    merged_id: str
    relationships_transferred: int = 0
    relationships_dropped: int = 0
    fields_merged: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def pair_key(a: str, b: str) -> str:
    """Order-independent key for a pair of ids."""
    lo, hi = sorted((a, b))
    return f"{lo}|{hi}"
