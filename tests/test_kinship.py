import pytest

from kinship_py.classifier import COUSIN, NIECE_NEPHEW, RelationshipClassification
from kinship_py.kinship import KinshipPathResolver, Locale, load_kin_terms, path_candidates

EN = Locale.EN
RU = Locale.RU


@pytest.fixture(scope="module")
def resolver():
    return KinshipPathResolver()


def _label(resolver, classifier, a, b, locale=EN):
    return resolver.label(classifier.classify(a, b), locale)


def test_kin_terms_cover_both_locales():
    terms = load_kin_terms()
    assert set(terms) >= {"en", "ru"}
    for loc in ("en", "ru"):
        assert {"fixed", "words", "paths"} <= set(terms[loc])


def test_direct_line_labels(resolver, classifier, family):
    assert _label(resolver, classifier, family["S1"], family["GF"]) == "grandfather"
    assert _label(resolver, classifier, family["S1"], family["GM"]) == "grandmother"
    assert _label(resolver, classifier, family["GF"], family["S2"]) == "granddaughter"
    assert _label(resolver, classifier, family["S1"], family["Dad"]) == "father"
    assert _label(resolver, classifier, family["S1"], family["GF"], RU) == "дедушка по отцу"
    assert _label(resolver, classifier, family["GM"], family["S1"], RU) == "внук"


def test_great_grandparent(resolver, classifier, family):
    assert _label(resolver, classifier, family["CousinKid"], family["GF"]) == "great-grandfather"
    assert _label(resolver, classifier, family["CousinKid"], family["GM"], RU) == "прабабушка"


def test_sibling_labels(resolver, classifier, family):
    assert _label(resolver, classifier, family["S1"], family["S2"]) == "sister"
    assert _label(resolver, classifier, family["S2"], family["S1"], RU) == "брат"
    assert _label(resolver, classifier, family["S1"], family["H1"]) == "half-brother"
    assert _label(resolver, classifier, family["S1"], family["H1"], RU) == "единокровный брат"


def test_collateral_labels(resolver, classifier, family):
    assert _label(resolver, classifier, family["S1"], family["Aunt"]) == "aunt"
    assert _label(resolver, classifier, family["S1"], family["Aunt"], RU) == "тётя по отцу"
    assert _label(resolver, classifier, family["Aunt"], family["S1"]) == "nephew"
    assert _label(resolver, classifier, family["S1"], family["Cousin"]) == "first cousin"
    assert _label(resolver, classifier, family["S1"], family["Cousin"], RU) == "двоюродная сестра"
    assert _label(resolver, classifier, family["S1"], family["CousinKid"]) == "first cousin once removed"
    assert _label(resolver, classifier, family["S1"], family["CousinKid"], RU) == "двоюродный племянник"
    assert _label(resolver, classifier, family["CousinKid"], family["S1"], RU) == "двоюродный дядя"


def test_generic_labels_from_kind(resolver):
    second = RelationshipClassification(COUSIN, "a", "b", cousin_degree=2, cousin_removed=1, generation_offset=-1, halfness="full")
    assert resolver.label(second, EN) == "second cousin once removed"
    assert resolver.label(second, RU, "F") == "троюродная племянница"
    assert resolver.label(second, RU) == "троюродный племянник или троюродная племянница"

    grand_niece = RelationshipClassification(NIECE_NEPHEW, "a", "b", cousin_degree=0, cousin_removed=2)
    assert resolver.label(grand_niece, EN, "F") == "great-niece"
    assert resolver.label(grand_niece, RU, "M") == "внучатый племянник"


def test_spouse_and_ex(resolver, classifier, store, person, family):
    assert _label(resolver, classifier, family["Dad"], family["Mom"]) == "wife"
    assert _label(resolver, classifier, family["Mom"], family["Dad"], RU) == "муж"
    a, b = person("A", "M"), person("B", "F")
    store.add_edge(a, b, "spouse", is_ex=True)
    assert _label(resolver, classifier, a, b) == "ex-wife"
    assert _label(resolver, classifier, b, a, RU) == "бывший муж"


def test_in_law_labels(resolver, classifier, store, person, family):
    s1 = family["S1"]
    wife = person("Wife", "F")
    wf, wm, wb = person("WF", "M"), person("WM", "F"), person("WB", "M")
    store.add_edge(s1, wife, "spouse")
    for parent in (wf, wm):
        store.add_edge(parent, wife, "parent")
        store.add_edge(parent, wb, "parent")

    assert _label(resolver, classifier, s1, wf) == "father-in-law"
    assert _label(resolver, classifier, s1, wm, RU) == "тёща"
    assert _label(resolver, classifier, s1, wf, RU) == "тесть"
    assert _label(resolver, classifier, s1, wb) == "brother-in-law"
    assert _label(resolver, classifier, s1, wb, RU) == "шурин"
    assert _label(resolver, classifier, wf, s1) == "son-in-law"
    assert _label(resolver, classifier, wf, s1, RU) == "зять"

    # no table entry: composed from the blood segment and the union
    assert _label(resolver, classifier, s1, family["Uncle"]) == "aunt's husband"
    assert _label(resolver, classifier, s1, family["Uncle"], RU) == "муж родственницы"


def test_fixed_labels(resolver, classifier, person, family):
    a, b = person("A"), person("B")
    assert _label(resolver, classifier, a, b) == "not related"
    assert _label(resolver, classifier, a, b, RU) == "не родственник"
    assert _label(resolver, classifier, a, a, RU) == "это вы"


def test_path_candidates_neutralize_later_steps_first(classifier, store, person, family):
    c = classifier.classify(family["S1"], family["Aunt"])
    assert list(path_candidates(c)) == ["father.parent.child", "parent.parent.child"]


def test_distant_cousin_label_skips_the_path_table(resolver, classifier, store, person):
    top = person("Top", "M")
    ends = []
    for side in ("A", "B"):
        prev = top
        for i in range(11):
            kid = person(f"{side}{i}", "M")
            store.add_edge(prev, kid, "parent")
            prev = kid
        ends.append(prev)

    c = classifier.classify(*ends)
    assert (c.kind, c.cousin_degree, c.cousin_removed) == (COUSIN, 10, 0)
    assert len(c.path.relations) == 22
    assert resolver.max_steps == 4
    assert list(path_candidates(c, resolver.max_steps)) == []
    assert resolver.label(c, EN) == "half tenth cousin"
    assert resolver.label(c, RU) == "11-юродный брат"


def test_step_family_labels(resolver, classifier, store, person, family):
    t = person("T", "M")
    store.add_edge(family["Mom"], t, "parent")
    store.add_edge(family["Dad"], t, "parent", halfness="step")
    assert _label(resolver, classifier, family["S1"], t) == "half-brother"
    assert _label(resolver, classifier, family["S1"], t, RU) == "единоутробный брат"
    assert _label(resolver, classifier, t, family["Dad"]) == "stepfather"
    assert _label(resolver, classifier, t, family["Dad"], RU) == "отчим"
    assert _label(resolver, classifier, family["Dad"], t) == "stepson"
    assert _label(resolver, classifier, family["Dad"], t, RU) == "пасынок"
    assert _label(resolver, classifier, t, family["GF"]) == "step-grandfather"
    assert _label(resolver, classifier, t, family["GF"], RU) == "неродной дедушка"

    sib = person("Sib", "F")
    store.add_edge(family["Other"], sib, "parent")
    store.add_edge(family["Other"], t, "parent", halfness="step")
    assert _label(resolver, classifier, t, sib) == "stepsister"
    assert _label(resolver, classifier, t, sib, RU) == "сводная сестра"


def test_adoptive_labels(resolver, classifier, store, person):
    mother, son = person("Mother", "F"), person("Son", "M")
    store.add_edge(mother, son, "parent", halfness="adoptive")
    assert _label(resolver, classifier, mother, son) == "adopted son"
    assert _label(resolver, classifier, mother, son, RU) == "приёмный сын"
    assert _label(resolver, classifier, son, mother) == "adoptive mother"
    assert _label(resolver, classifier, son, mother, RU) == "приёмная мать"

    a, b = person("A", "M"), person("B", "F")
    store.add_edge(a, b, "sibling", halfness="foster")
    assert _label(resolver, classifier, a, b) == "foster sister"
    assert _label(resolver, classifier, a, b, RU) == "патронатная сестра"


def test_unknown_locale_is_rejected(resolver, classifier, family):
    with pytest.raises(ValueError):
        resolver.label(classifier.classify(family["S1"], family["S2"]), "fr")
