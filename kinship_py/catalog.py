"""Relationship type catalog.

The catalog is configuration data shipped in ``data/relationship_types.json``
and exposed as a read-only mapping keyed by type code.
"""
from __future__ import annotations
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from .errors import InvalidQualifier, InvalidRelationshipType
from .fs import json_load
from .models import CDate, RelationshipType

PARENT_CHILD = "parent-child"
UNION = "union"
SIBLING_DERIVED = "sibling-derived"
CATEGORIES = (PARENT_CHILD, UNION, SIBLING_DERIVED)

DATA_DIR = Path(__file__).resolve().parent / "data"

HALFNESS_BY_CATEGORY = {
    PARENT_CHILD: ("none", "adoptive", "foster", "step"),
    UNION: ("none",),
    SIBLING_DERIVED: ("none", "half", "adoptive", "foster"),
}
LINEAGES = ("paternal", "maternal")


def load_catalog(path: Optional[Path] = None) -> Mapping[str, RelationshipType]:
    raw = json_load(path or DATA_DIR / "relationship_types.json", default=None)
    if not isinstance(raw, dict):
        raise RuntimeError(f"relationship type catalog missing or invalid: {path}")
    types: Dict[str, RelationshipType] = {}
    for code, d in raw.items():
        if d.get("category") not in CATEGORIES:
            raise RuntimeError(f"relationship type {code} has unknown category {d.get('category')!r}")
        types[code] = RelationshipType(
            code=code,
            category=d["category"],
            is_directed=bool(d.get("is_directed")),
            is_symmetric=bool(d.get("is_symmetric")),
            default_inverse_code=d.get("default_inverse_code"),
            description=d.get("description", ""),
            labels=MappingProxyType(dict(d.get("labels") or {})),
        )
    for t in types.values():
        if t.default_inverse_code and t.default_inverse_code not in types:
            raise RuntimeError(f"relationship type {t.code} has unknown inverse {t.default_inverse_code}")
    return MappingProxyType(types)


CATALOG: Mapping[str, RelationshipType] = load_catalog()


def get_type(code: str, catalog: Mapping[str, RelationshipType] = CATALOG) -> RelationshipType:
    t = catalog.get(code) if isinstance(code, str) else None
    if t is None:
        raise InvalidRelationshipType(code)
    return t


def validate_qualifiers(rtype: RelationshipType, qualifiers: Dict[str, Any]) -> Dict[str, Any]:
    """Return qualifiers normalized for storage; raise InvalidQualifier on bad input."""
    out: Dict[str, Any] = {}
    for name, value in qualifiers.items():
        if name == "halfness":
            value = value or "none"
            if value not in HALFNESS_BY_CATEGORY[rtype.category]:
                raise InvalidQualifier(name, value, f"not allowed for {rtype.category} edges")
        elif name in ("in_law", "is_ex"):
            value = bool(value)
            if name == "is_ex" and value and rtype.category != UNION:
                raise InvalidQualifier(name, value, "only unions can be ex-relationships")
        elif name in ("cousin_degree", "cousin_removed"):
            if value is not None:
                if rtype.code != "cousin":
                    raise InvalidQualifier(name, value, "only meaningful for cousin edges")
                if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                    raise InvalidQualifier(name, value, "must be a non-negative integer")
                if name == "cousin_degree" and value < 1:
                    raise InvalidQualifier(name, value, "cousin degree starts at 1")
        elif name in ("marriage_date", "divorce_date"):
            if value is not None and not isinstance(value, CDate):
                parsed = CDate.from_string(str(value))
                if parsed is None:
                    raise InvalidQualifier(name, value, "unparseable date")
                value = parsed
            if value is not None and rtype.category != UNION:
                raise InvalidQualifier(name, value, "only unions carry marriage dates")
        elif name == "lineage":
            if value is not None and value not in LINEAGES:
                raise InvalidQualifier(name, value, f"expected one of {LINEAGES}")
        else:
            raise InvalidQualifier(name, value, "unknown qualifier")
        out[name] = value
    return out
