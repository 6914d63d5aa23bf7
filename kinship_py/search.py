from __future__ import annotations
from difflib import SequenceMatcher
from functools import lru_cache
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Tuple
from unicodedata import normalize as _uni_norm
import re

from .fs import json_load
from .models import Person

_NAME_VARIANTS_FILE = Path(__file__).resolve().parent / "data" / "name_variants.json"

_CYRILLIC = {
    "а": "a", "б": "b", "в": "v", "г": "g", "д": "d", "е": "e", "ё": "e",
    "ж": "zh", "з": "z", "и": "i", "й": "i", "к": "k", "л": "l", "м": "m",
    "н": "n", "о": "o", "п": "p", "р": "r", "с": "s", "т": "t", "у": "u",
    "ф": "f", "х": "kh", "ц": "ts", "ч": "ch", "ш": "sh", "щ": "shch",
    "ъ": "", "ы": "y", "ь": "", "э": "e", "ю": "yu", "я": "ya",
    "і": "i", "ї": "i", "є": "e", "ґ": "g",
}


def transliterate(s: str) -> str:
    return "".join(_CYRILLIC.get(c, c) for c in s.lower())


def _normalize_text(s: Optional[str]) -> str:
    if not s:
        return ""
    # cyrillic to latin, remove accents, lowercase
    nf = _uni_norm("NFKD", transliterate(s))
    ascii_only = "".join([c for c in nf if ord(c) < 128])
    return ascii_only.lower()


def name_key(s: Optional[str]) -> str:
    """Phonetic-ish key: letters only, spelling variants folded, repeats collapsed."""
    t = re.sub(r"[^a-z]", "", _normalize_text(s))
    for a, b in (("ks", "x"), ("kh", "h"), ("ph", "f"), ("y", "i"), ("ei", "i"), ("ii", "i")):
        t = t.replace(a, b)
    return re.sub(r"(.)\1+", r"\1", t)


@lru_cache(maxsize=1)
def _variant_index() -> Dict[str, FrozenSet[int]]:
    data = json_load(_NAME_VARIANTS_FILE) or {}
    index: Dict[str, set] = {}
    for gid, group in enumerate(data.get("groups", [])):
        for name in group:
            index.setdefault(name_key(name), set()).add(gid)
    return {k: frozenset(v) for k, v in index.items()}


def are_variants(a: Optional[str], b: Optional[str]) -> bool:
    """True when both names belong to one known group (Maria / Мария / Маша)."""
    ka, kb = name_key(a), name_key(b)
    if not ka or not kb:
        return False
    index = _variant_index()
    return bool(index.get(ka, frozenset()) & index.get(kb, frozenset()))


def name_similarity(a: Optional[str], b: Optional[str]) -> float:
    """0..1 similarity of two names, script independent.

    1.0 exact (after normalization), 0.9 same key or known variant,
    otherwise the SequenceMatcher ratio of the keys.
    """
    na, nb = _normalize_text(a).strip(), _normalize_text(b).strip()
    if not na or not nb:
        return 0.0
    if na == nb:
        return 1.0
    ka, kb = name_key(a), name_key(b)
    if ka == kb or are_variants(a, b):
        return 0.9
    return SequenceMatcher(None, ka, kb).ratio()


def _person_search_fields(p: Person) -> List[Tuple[str, str]]:
    """Return list of (field_name, normalized_text) for searchable person fields."""
    fields = []
    fields.append(("first_name", _normalize_text(p.first_name)))
    fields.append(("last_name", _normalize_text(p.last_name)))
    fields.append(("fullname", _normalize_text(p.full_name)))
    if p.maiden_name:
        fields.append(("maiden_name", _normalize_text(p.maiden_name)))
    if p.nickname:
        fields.append(("nickname", _normalize_text(p.nickname)))
    if p.birth_place:
        fields.append(("birth_place", _normalize_text(p.birth_place.to_simple() or "")))
    return fields


def search_people(all_persons: List[Person], q: str, limit: int = 50) -> List[Person]:
    """Search persons by query string q. Returns list of Person ordered by relevance.

    Every query token must match some field; known name variants count as a
    whole-word match, so 'Masha' finds 'Мария'.
    """
    if not q:
        return []
    qnorm = _normalize_text(q)
    tokens = [t for t in qnorm.split() if t]
    if not tokens:
        return []

    scored = []
    for p in all_persons:
        if p.merged_into:
            continue
        fields = _person_search_fields(p)
        score = 0
        matched_all = True
        for tok in tokens:
            best_field_score = 0
            for fname, txt in fields:
                if not txt:
                    continue
                if txt == tok:
                    s = 100
                elif tok in txt.split():
                    s = 70
                elif any(are_variants(tok, w) for w in txt.split()):
                    s = 60
                elif txt.startswith(tok):
                    s = 50
                elif tok in txt:
                    s = 20
                else:
                    s = 0
                # boost matches in last_name/first_name/fullname
                if s and fname == "last_name":
                    s += 30
                if s and fname == "first_name":
                    s += 20
                if s and fname == "fullname":
                    s += 10
                best_field_score = max(best_field_score, s)
            if not best_field_score:
                matched_all = False
                break
            score += best_field_score
        if matched_all and score > 0:
            scored.append((score, p))

    scored.sort(key=lambda x: (-x[0], x[1].id))
    return [p for _, p in scored[:limit]]
