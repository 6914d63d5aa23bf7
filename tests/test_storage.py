import pytest

from kinship_py.config import Config
from kinship_py.errors import (
    CycleDetected,
    DuplicateEdge,
    EdgeNotFound,
    InvalidQualifier,
    InvalidRelationshipType,
    MergeConflict,
    ParentConflict,
    PersonInUse,
    PersonNotFound,
)
from kinship_py.events import RELATIONSHIP_ADDED, RELATIONSHIP_REMOVED
from kinship_py.models import Person, PotentialDuplicate
from kinship_py.storage import EdgeSpec, GraphStore


def test_person_crud_and_listing(store):
    p = store.add_person(Person(first_name="Anna", gender="F"))
    assert store.get_person(p.id).first_name == "Anna"
    assert len(store.list_persons()) == 1
    with pytest.raises(PersonNotFound):
        store.require_person("missing")
    with pytest.raises(ValueError):
        store.add_person(Person(first_name="X", gender="Q"))


def test_add_edge_writes_inverse_row(store, person):
    a = person("A", "M")
    b = person("B", "F")
    eid = store.add_edge(a, b, "parent")
    edge = store.get_edge(eid)
    assert (edge.person_a, edge.person_b, edge.type_code) == (a, b, "parent")
    assert store.parents_of(b) == (a,)
    assert store.children_of(a) == (b,)
    inverse = store.get_edges(b)
    assert [e.type_code for e in inverse] == ["child"]
    assert inverse[0].person_a == b and inverse[0].pair_id == edge.pair_id


def test_add_edge_is_idempotent(store, person):
    a = person("A", "M")
    b = person("B")
    first = store.add_edge(a, b, "parent")
    second = store.add_edge(a, b, "parent")
    assert first == second
    assert len(store.edges) == 2
    with pytest.raises(DuplicateEdge):
        store.add_edge(a, b, "parent", idempotent=False)


def test_symmetric_edges_are_stored_once(store, person):
    a = person("A", "M")
    b = person("B", "F")
    first = store.add_edge(b, a, "spouse")
    assert store.add_edge(a, b, "spouse") == first
    assert len(store.edges) == 1
    assert [sid for sid, _ in store.spouses_of(a)] == [b]
    assert [sid for sid, _ in store.spouses_of(b)] == [a]


def test_cycle_is_rejected_and_graph_unchanged(store, person, events):
    a, b, c = person("A"), person("B"), person("C")
    store.add_edge(a, b, "parent")
    store.add_edge(b, c, "parent")
    before = dict(store.edges)
    added = []
    events.subscribe(RELATIONSHIP_ADDED, lambda name, payload: added.append(payload))

    with pytest.raises(CycleDetected) as info:
        store.add_edge(c, a, "parent")
    assert info.value.path == (c, b, a)
    # "a is the child of c" is the same edge seen from the other side
    with pytest.raises(CycleDetected):
        store.add_edge(a, c, "child")
    with pytest.raises(CycleDetected):
        store.add_edge(a, a, "spouse")

    assert store.edges == before
    assert store.parents_of(a) == ()
    assert added == []


def test_unknown_type_and_bad_qualifiers(store, person):
    a, b = person("A"), person("B")
    with pytest.raises(InvalidRelationshipType):
        store.add_edge(a, b, "godparent")
    with pytest.raises(InvalidQualifier):
        store.add_edge(a, b, "parent", is_ex=True)
    with pytest.raises(InvalidQualifier):
        store.add_edge(a, b, "sibling", cousin_degree=1)
    with pytest.raises(InvalidQualifier):
        store.add_edge(a, b, "cousin", cousin_degree=0)
    with pytest.raises(InvalidQualifier):
        store.add_edge(a, b, "parent", colour="blue")
    with pytest.raises(PersonNotFound):
        store.add_edge(a, "missing", "parent")
    assert store.edges == {}


def test_parent_slots(store, person):
    child = person("Child")
    father = person("Father", "M")
    other_father = person("Other", "M")
    mother = person("Mother", "F")
    step = person("Step", "M")

    store.add_edge(father, child, "parent")
    with pytest.raises(ParentConflict) as info:
        store.add_edge(other_father, child, "parent")
    assert info.value.existing_edge_id == store.edge_between(father, child, "parent").id

    store.add_edge(mother, child, "parent")
    unknown = person("Unknown")
    with pytest.raises(ParentConflict):
        store.add_edge(unknown, child, "parent")

    # non-biological parents do not take a slot
    store.add_edge(step, child, "parent", halfness="step")
    assert set(store.parents_of(child)) == {father, mother, step}
    assert set(store.blood_parents_of(child)) == {father, mother}
    assert store.blood_children_of(step) == ()
    assert len(store.biological_parent_edges(child)) == 2


def test_batch_is_all_or_nothing(store, person):
    a, b, c = person("A"), person("B"), person("C")
    with pytest.raises(CycleDetected):
        store.add_edges([EdgeSpec(a, b, "parent"), EdgeSpec(b, a, "parent")])
    assert store.edges == {}

    with pytest.raises(InvalidRelationshipType):
        store.add_edges([EdgeSpec(a, b, "parent"), EdgeSpec(b, c, "nope")])
    assert store.edges == {}

    ids = store.add_edges([EdgeSpec(a, b, "parent"), EdgeSpec(b, c, "parent")])
    assert len(ids) == 2
    assert store.traversal.is_ancestor(a, c) == (c, b, a)


def test_check_edges_is_a_dry_run(store, person):
    a, b = person("A"), person("B")
    store.add_edge(a, b, "parent")
    rows = store.check_edges([EdgeSpec(b, person("C"), "parent")])
    assert [r.type_code for r in rows] == ["parent", "child"]
    assert store.check_edges([EdgeSpec(a, b, "parent")]) == []
    with pytest.raises(CycleDetected):
        store.check_edges([EdgeSpec(b, a, "parent")])
    assert len(store.edges) == 2


def test_state_survives_reload(tmp_path, person, store):
    a = person("A", "M", last_name="Smith", birth_date="1890-05-12")
    b = person("B", "F")
    store.add_edge(a, b, "parent")
    store.add_edge(a, person("W", "F"), "spouse", marriage_date="1889", is_ex=True)
    store.close()

    st = GraphStore(store.root, Config(data_dir=store.root))
    try:
        assert st.get_person(a).last_name == "Smith"
        assert st.get_person(a).birth_date.to_iso() == "1890-05-12"
        assert st.parents_of(b) == (a,)
        (_, union), = st.spouses_of(a)
        assert union.is_ex and union.marriage_date.year == 1889
        assert len(st.edges) == 3
    finally:
        st.close()


def test_remove_and_update_edge(store, person, events):
    removed = []
    events.subscribe(RELATIONSHIP_REMOVED, lambda name, payload: removed.append(payload))
    a, b = person("A", "M"), person("B")
    eid = store.add_edge(a, b, "parent")
    store.traversal.ancestors(b)

    updated = store.update_edge(eid, halfness="adoptive")
    assert updated.halfness == "adoptive"
    assert all(e.halfness == "adoptive" for e in store.edges.values())
    assert store.parents_of(b) == (a,)
    assert store.blood_parents_of(b) == ()
    assert store.traversal.ancestors(b, blood=True) == []
    store.update_edge(eid, halfness="none")
    assert store.blood_parents_of(b) == (a,)

    assert store.remove_edge(eid)
    assert store.edges == {}
    assert store.traversal.ancestors(b) == []
    assert removed[0]["edge_id"] == eid
    assert not store.remove_edge(eid)
    with pytest.raises(EdgeNotFound):
        store.update_edge(eid, halfness="none")


def test_delete_person_with_edges_is_refused(store, person):
    a, b = person("A"), person("B")
    store.add_edge(a, b, "sibling")
    with pytest.raises(PersonInUse):
        store.delete_person(a)
    lonely = person("Lonely")
    assert store.delete_person(lonely)
    assert not store.delete_person(lonely)


def test_merge_transfers_relationships(store, person):
    keep = person("Ivan", "M", last_name="Petrov")
    dup = person("Ivan", None, last_name="Petrov", birth_date="1900", email="ivan@example.org")
    child = person("Child")
    wife = person("Wife", "F")
    store.add_edge(dup, child, "parent")
    store.add_edge(keep, wife, "spouse")
    store.add_edge(dup, wife, "spouse")

    record = PotentialDuplicate(profile_a=keep, profile_b=dup, confidence_score=0.9, status="confirmed")
    result = store.merge_persons(keep, dup, merged_by="reviewer", duplicate=record)

    assert result.relationships_transferred == 1
    assert result.relationships_dropped == 1
    assert store.parents_of(child) == (keep,)
    assert store.get_person(dup).merged_into == keep
    kept = store.get_person(keep)
    assert kept.birth_date.year == 1900 and kept.email == "ivan@example.org"
    assert "birth_date" in result.fields_merged
    assert store.get_duplicate(record.id).status == "confirmed"
    history = store.merge_history()
    assert history[0]["duplicate_id"] == record.id and history[0]["merged_by"] == "reviewer"

    with pytest.raises(MergeConflict):
        store.merge_persons(keep, dup)


def test_merge_conflicts_leave_graph_untouched(store, person):
    grand = person("Grand", "M")
    parent = person("Parent", "M")
    store.add_edge(grand, parent, "parent")
    with pytest.raises(MergeConflict):
        store.merge_persons(grand, parent)

    with pytest.raises(MergeConflict):
        store.merge_persons(person("Him", "M"), person("Her", "F"))

    child = person("Child")
    father = person("Father", "M")
    unknown = person("Unknown")
    other_man = person("OtherMan", "M")
    store.add_edge(father, child, "parent")
    store.add_edge(unknown, child, "parent")
    before = dict(store.edges)
    with pytest.raises(MergeConflict) as info:
        store.merge_persons(other_man, unknown)
    assert info.value.person_id == child
    assert store.edges == before
    assert store.get_person(unknown).merged_into is None
