"""Localized kinship terms.

``KinshipPathResolver.label(classification, locale, subject_gender)`` turns a
``RelationshipClassification`` into display text. It is a pure lookup: the
kin-term table (``data/kin_terms.json``) is keyed by path expression, and the
resolver only ever reads the classification it is given.

Lookup order:

1. fixed labels (self, unrelated, unknown);
2. step, adoptive and foster relations: the step-family terms of the path
   table for parents, children and siblings, otherwise the blood label with
   the locale's qualifier;
3. the path table, exact expression first, then with gendered steps
   progressively neutralized (later steps first, so the first hop, which
   carries paternal/maternal lineage, is kept longest);
4. a generic label built from kind, degree, removal and halfness;
5. for in-laws, a label composed from the two blood segments around the
   union, or the generic "by marriage" form.

Ex-unions get the locale's "ex" prefix.

Only paths no longer than the longest table key are looked up, so labelling
a distant cousin never enumerates candidate expressions.
"""
from __future__ import annotations
from dataclasses import replace
from enum import Enum
from itertools import combinations
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Optional

from .classifier import (
    ANCESTOR,
    AUNT_UNCLE,
    COUSIN,
    DESCENDANT,
    IN_LAW,
    NIECE_NEPHEW,
    NON_BIOLOGICAL,
    SELF,
    SIBLING,
    SPOUSE,
    UNKNOWN,
    UNRELATED,
    RelationshipClassification,
)
from .cousins import great_prefix, ordinal, removal_phrase
from .fs import json_load

KIN_TERMS_FILE = Path(__file__).resolve().parent / "data" / "kin_terms.json"

# step-family entries of the path table, by kind
STEP_PATHS = {ANCESTOR: "parent.spouse", DESCENDANT: "spouse.child", SIBLING: "parent.spouse.child"}


class Locale(str, Enum):
    EN = "en"
    RU = "ru"


def load_kin_terms(path: Optional[Path] = None) -> Mapping[str, Any]:
    data = json_load(path or KIN_TERMS_FILE)
    if not data:
        raise FileNotFoundError(f"kin-term table not found: {path or KIN_TERMS_FILE}")
    missing = [loc.value for loc in Locale if loc.value not in data]
    if missing:
        raise ValueError(f"kin-term table has no entries for locale(s): {', '.join(missing)}")
    return MappingProxyType(data)


def _form(entry: Mapping[str, str], gender: Optional[str]) -> str:
    if gender in ("M", "F") and gender in entry:
        return entry[gender]
    return entry.get("N") or entry.get("M") or ""


def path_candidates(classification: RelationshipClassification, max_steps: Optional[int] = None) -> Iterator[str]:
    """Path expressions to try, most specific first.

    A path with more than ``max_steps`` relations yields nothing.
    """
    path = classification.path
    if path is None or not path.relations:
        return
    if max_steps is not None and len(path.relations) > max_steps:
        return
    tokens = path.tokens()
    gendered = [i for i, t in enumerate(tokens) if t != path.relations[i]]
    seen = set()
    for k in range(len(gendered) + 1):
        for picked in combinations(reversed(gendered), k):
            key = ".".join(path.relations[i] if i in picked else t for i, t in enumerate(tokens))
            if key not in seen:
                seen.add(key)
                yield key


class KinshipPathResolver:
    def __init__(self, terms: Optional[Mapping[str, Any]] = None) -> None:
        self.terms = terms or load_kin_terms()
        self.max_steps = max((key.count(".") + 1 for loc in Locale for key in self.terms[loc.value]["paths"]), default=0)

    def label(self, classification: RelationshipClassification, locale: Locale = Locale.EN, subject_gender: Optional[str] = None) -> str:
        """Text for what ``classification.b`` is to ``classification.a``."""
        locale = Locale(locale)
        table = self.terms[locale.value]
        if subject_gender is None and classification.path is not None:
            subject_gender = classification.path.genders[-1]

        fixed = table["fixed"]
        if classification.kind in (SELF, UNRELATED, UNKNOWN):
            return fixed[classification.kind]
        if classification.halfness in NON_BIOLOGICAL:
            text = self._nonbiological(classification, locale, subject_gender)
            if classification.in_law:
                text = f"{text} {table['words']['in_law_suffix']}"
            return text

        text = self.lookup_path(classification, locale, subject_gender)
        if text is not None:
            if classification.is_ex:
                text = self._ex(text, locale, subject_gender)
            return text
        if classification.kind == IN_LAW:
            return self._in_law(classification, locale, subject_gender)
        text = self._generic(classification, locale, subject_gender)
        if classification.in_law:
            text = f"{text} {table['words']['in_law_suffix']}"
        return text

    def lookup_path(self, classification: RelationshipClassification, locale: Locale, subject_gender: Optional[str] = None) -> Optional[str]:
        paths = self.terms[Locale(locale).value]["paths"]
        for key in path_candidates(classification, self.max_steps):
            entry = paths.get(key)
            if entry is not None:
                return _form(entry, subject_gender)
        return None

    def _ex(self, text: str, locale: Locale, gender: Optional[str]) -> str:
        prefix = _form(self.terms[locale.value]["words"]["ex"], gender)
        if locale == Locale.EN:
            return f"{prefix}{text}"
        return f"{prefix} {text}"

    def _nonbiological(self, c: RelationshipClassification, locale: Locale, gender: Optional[str]) -> str:
        table = self.terms[locale.value]
        words = table["words"]
        one_hop = c.kind == SIBLING or (c.kind in (ANCESTOR, DESCENDANT) and c.generations == 1)
        if c.halfness == "step" and one_hop:
            entry = table["paths"].get(STEP_PATHS[c.kind])
            if entry is not None:
                return _form(entry, gender)
        plain = replace(c, halfness=None)
        if locale == Locale.RU:
            qualifier = words[c.halfness]
            if gender in ("M", "F"):
                return f"{qualifier[gender]} {self._generic_ru(plain, gender)}"
            forms = [f"{qualifier[g]} {self._generic_ru(plain, g)}" for g in ("M", "F")]
            return f" {words['or']} ".join(forms)
        text = self._generic_en(plain, gender)
        if c.halfness == "step":
            return f"{words['step']}{text}"
        if c.halfness == "adoptive" and c.kind == DESCENDANT:
            return f"{words['adopted']} {text}"
        return f"{words[c.halfness]} {text}"

    # --- generic labels -----------------------------------------------------------
    def _generic(self, c: RelationshipClassification, locale: Locale, gender: Optional[str]) -> str:
        if locale == Locale.RU:
            return self._generic_ru(c, gender)
        return self._generic_en(c, gender)

    def _generic_en(self, c: RelationshipClassification, gender: Optional[str]) -> str:
        words = self.terms["en"]["words"]
        half = words["half"] if c.halfness == "half" else ""
        if c.kind == SPOUSE:
            word = _form(words.get(c.edge_type or "spouse", words["spouse"]), gender)
            return self._ex(word, Locale.EN, gender) if c.is_ex else word
        if c.kind in (ANCESTOR, DESCENDANT):
            n = c.generations or 1
            word = _form(words["parent" if c.kind == ANCESTOR else "child"], gender)
            if n == 1:
                return word
            return f"{great_prefix(n - 2)}grand{word}"
        if c.kind == SIBLING:
            word = _form(words["sibling"], gender)
            return f"{half}{word}"
        if c.kind in (AUNT_UNCLE, NIECE_NEPHEW):
            word = _form(words[c.kind], gender)
            return f"{half}{great_prefix((c.cousin_removed or 1) - 1)}{word}"
        if c.kind == COUSIN:
            text = f"{ordinal(c.cousin_degree or 1)} cousin"
            if c.cousin_removed:
                text = f"{text} {removal_phrase(c.cousin_removed)}"
            return f"half {text}" if half else text
        return self.terms["en"]["fixed"][UNKNOWN]

    def _generic_ru(self, c: RelationshipClassification, gender: Optional[str]) -> str:
        words = self.terms["ru"]["words"]
        great = words["great"]

        def either(build) -> str:
            if gender in ("M", "F"):
                return build(gender)
            return f"{build('M')} {words['or']} {build('F')}"

        def adjective(k: int, g: str) -> str:
            stem = words["cousin_stems"].get(str(k), f"{k + 1}-юродн")
            return stem + words["adjective_endings"][g]

        if c.kind == SPOUSE:
            word = _form(words.get(c.edge_type or "spouse", words["spouse"]), gender)
            return self._ex(word, Locale.RU, gender) if c.is_ex else word
        if c.kind in (ANCESTOR, DESCENDANT):
            n = c.generations or 1
            if n == 1:
                return _form(words["parent" if c.kind == ANCESTOR else "child"], gender)
            base = words["grandparent" if c.kind == ANCESTOR else "grandchild"]
            return either(lambda g: great * (n - 2) + base[g])
        if c.kind == SIBLING:
            if c.halfness != "half":
                return either(lambda g: words["sibling"][g])
            qualifier = words.get(f"half_{c.lineage}", words["half"])
            return either(lambda g: f"{qualifier[g]} {words['sibling'][g]}")
        removed = c.cousin_removed or 0
        if c.kind == AUNT_UNCLE:
            if removed <= 1:
                return either(lambda g: words["aunt_uncle"][g])
            return either(lambda g: f"{adjective(1, g)} {great * (removed - 2)}{words['grandparent'][g]}")
        if c.kind == NIECE_NEPHEW:
            if removed <= 1:
                return either(lambda g: words["niece_nephew"][g])
            return either(lambda g: f"{great * (removed - 2)}{words['grand_niece_nephew'][g]} {words['niece_nephew'][g]}")
        if c.kind == COUSIN:
            degree = c.cousin_degree or 1
            offset = c.generation_offset
            if removed == 0:
                return either(lambda g: f"{adjective(degree, g)} {words['sibling'][g]}")
            if offset is None:
                note = words["removed"].get(str(removed), words["removed_many"].format(n=removed))
                return either(lambda g: f"{adjective(degree, g)} {words['sibling'][g]}") + f" ({note})"
            if offset > 0:
                # b is in an older generation than a
                if removed == 1:
                    return either(lambda g: f"{adjective(degree, g)} {words['aunt_uncle'][g]}")
                return either(lambda g: f"{adjective(degree + 1, g)} {great * (removed - 2)}{words['grandparent'][g]}")
            if removed == 1:
                return either(lambda g: f"{adjective(degree, g)} {words['niece_nephew'][g]}")
            return either(lambda g: f"{adjective(degree + 1, g)} {great * (removed - 2)}{words['grandchild'][g]}")
        return self.terms["ru"]["fixed"][UNKNOWN]

    def _in_law(self, c: RelationshipClassification, locale: Locale, gender: Optional[str]) -> str:
        words = self.terms[locale.value]["words"]
        path = c.path
        x_gender = y_gender = None
        if path is not None and len(c.via) == 2:
            index = {pid: g for pid, g in zip(path.persons, path.genders)}
            x_gender, y_gender = index.get(c.via[0]), index.get(c.via[1])
        spouse_word = _form(words.get(c.edge_type or "spouse", words["spouse"]), y_gender)
        if c.is_ex:
            spouse_word = self._ex(spouse_word, locale, y_gender)
        near = self.label(c.near, locale, x_gender) if c.near else None
        far = self.label(c.far, locale, gender) if c.far else None

        if locale == Locale.RU:
            if far is not None:
                return f"{far} {words['in_law_suffix']}"
            return f"{spouse_word} {_form(words['relative_genitive'], x_gender)}"
        parts = [p for p in (near, spouse_word, far) if p]
        return "'s ".join(parts)
