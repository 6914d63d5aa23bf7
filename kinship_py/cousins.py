"""Cousin arithmetic and English kinship words.

APIs:
    cousin_label(l1, l2) -> (label, degree, removed)
    ordinal(n), removal_phrase(n), great_prefix(n)

Inputs l1 and l2 are generation distances from each person to their most
recent common ancestor (MRCA). For example:
    - parent <-> child : l1=0, l2=1
    - siblings: l1=1, l2=1
    - first cousins: l1=2, l2=2
    - aunt/niece: l1=1, l2=2 (first is aunt/uncle relative to second)

The label is relative to the first person.
"""
from typing import Optional, Tuple

_WORD_ORDINALS = {
    1: "first",
    2: "second",
    3: "third",
    4: "fourth",
    5: "fifth",
    6: "sixth",
    7: "seventh",
    8: "eighth",
    9: "ninth",
    10: "tenth",
}


def ordinal(n: int, words: bool = True) -> str:
    """'first', 'second', ... up to ten, then '11th', '12th', '21st'."""
    if words and n in _WORD_ORDINALS:
        return _WORD_ORDINALS[n]
    if 10 <= (n % 100) <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def removal_phrase(removed: int) -> str:
    if removed <= 0:
        return ""
    if removed == 1:
        return "once removed"
    if removed == 2:
        return "twice removed"
    return f"{removed} times removed"


def great_prefix(n: int) -> str:
    """Prefix for n extra generations: '', 'great-', 'great-great-', then '3rd great-'."""
    if n <= 0:
        return ""
    if n <= 2:
        return "great-" * n
    return f"{ordinal(n, words=False)} great-"


def cousin_label(l1: int, l2: int) -> Tuple[str, Optional[int], Optional[int]]:
    """Return (label, degree, removed) for distances l1, l2 to the MRCA.

    degree and removed are set for collateral relations (both distances
    >= 1): degree = min(l1, l2) - 1, removed = |l1 - l2|. Degree 0 covers
    siblings (removed 0) and aunt/uncle vs niece/nephew lines.
    """
    if l1 < 0 or l2 < 0:
        raise ValueError("l1 and l2 must be non-negative integers")

    if l1 == 0 and l2 == 0:
        return "self", None, None

    if l1 == 0:
        # first person is the ancestor
        return f"{great_prefix(l2 - 2)}{'grand' if l2 >= 2 else ''}parent", None, None
    if l2 == 0:
        return f"{great_prefix(l1 - 2)}{'grand' if l1 >= 2 else ''}child", None, None

    degree = min(l1, l2) - 1
    removed = abs(l1 - l2)

    if degree == 0:
        if removed == 0:
            return "sibling", 0, 0
        if l1 < l2:
            return f"{great_prefix(removed - 1)}aunt/uncle", 0, removed
        return f"{great_prefix(removed - 1)}niece/nephew", 0, removed

    label = f"{ordinal(degree)} cousin"
    if removed:
        label = f"{label} {removal_phrase(removed)}"
    return label, degree, removed
