from kinship_py.cousins import cousin_label, great_prefix, ordinal, removal_phrase


def test_siblings():
    lbl, deg, rem = cousin_label(1, 1)
    assert lbl == "sibling"
    assert deg == 0 and rem == 0


def test_parent_child():
    lbl, deg, rem = cousin_label(0, 1)
    assert lbl == "parent"
    assert deg is None and rem is None
    assert cousin_label(3, 0)[0] == "great-grandchild"


def test_aunt_niece():
    lbl, deg, rem = cousin_label(1, 2)
    assert lbl == "aunt/uncle"
    assert deg == 0 and rem == 1
    assert cousin_label(3, 1)[0] == "great-niece/nephew"


def test_first_cousins():
    lbl, deg, rem = cousin_label(2, 2)
    assert lbl == "first cousin"
    assert deg == 1 and rem == 0


def test_second_cousins_once_removed():
    lbl, deg, rem = cousin_label(3, 4)
    assert (deg, rem) == (2, 1)
    assert lbl == "second cousin once removed"


def test_ordinals_and_prefixes():
    assert ordinal(3) == "third"
    assert ordinal(11) == "11th"
    assert ordinal(22) == "22nd"
    assert removal_phrase(3) == "3 times removed"
    assert great_prefix(2) == "great-great-"
    assert great_prefix(4) == "4th great-"
