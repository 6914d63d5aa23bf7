import threading
from dataclasses import replace

import pytest

from kinship_py.config import Config
from kinship_py.duplicates import CHECKPOINT_FILE, CONFIRM, REJECT, DuplicateDetector, date_similarity
from kinship_py.errors import DuplicateNotFound, MergeConflict
from kinship_py.events import PROFILES_MERGED
from kinship_py.models import CDate, Person, PotentialDuplicate


@pytest.fixture
def detector(store):
    return DuplicateDetector(store)


def _ivan(**extra):
    data = {"first_name": "Ivan", "last_name": "Petrov", "gender": "M", "birth_date": "1900-05-12", "birth_place": "Tver"}
    data.update(extra)
    return Person.from_dict(data)


class CancelAfter:
    """Stands in for threading.Event: reports set after n checks."""

    def __init__(self, n):
        self.n = n

    def is_set(self):
        self.n -= 1
        return self.n < 0


def test_date_similarity_levels():
    scores = Config().date_scores
    d = CDate.from_string
    assert date_similarity(d("1900-05-12"), d("1900-05-12"), scores, 2) == 1.0
    assert date_similarity(d("1900-05-12"), d("1900-05-30"), scores, 2) == 0.8
    assert date_similarity(d("1900"), d("1900-05-30"), scores, 2) == 0.5
    assert date_similarity(d("1900"), d("1902"), scores, 2) == 0.25
    assert date_similarity(d("1900"), d("1910"), scores, 2) == 0.0
    assert date_similarity(None, d("1910"), scores, 2) is None


def test_score_explains_itself(detector):
    confidence, reasons = detector.score_persons(_ivan(), _ivan(), 0)
    assert confidence == pytest.approx(0.65)
    assert reasons["profile"] == "living"
    assert set(reasons) == {"first_name", "last_name", "birth_date", "birth_place", "profile"}
    assert reasons["birth_date"]["contribution"] == pytest.approx(0.2)
    assert detector.confidence_level(confidence) == "medium"


def test_score_is_monotonic_in_agreeing_signals(detector):
    base, _ = detector.score_persons(_ivan(), _ivan(), 0)
    with_shared, reasons = detector.score_persons(_ivan(), _ivan(), 2)
    assert with_shared > base
    assert reasons["shared_relatives"]["count"] == 2
    with_contact, _ = detector.score_persons(_ivan(email="i@p.ru"), _ivan(email="I@P.ru "), 2)
    assert with_contact > with_shared
    weaker, _ = detector.score_persons(_ivan(), _ivan(birth_date="1901"), 0)
    assert weaker < base


def test_maiden_name_matches_married_name(detector):
    a = Person.from_dict({"first_name": "Anna", "last_name": "Smirnova", "gender": "F"})
    b = Person.from_dict({"first_name": "Anna", "last_name": "Orlova", "maiden_name": "Smirnova", "gender": "F"})
    _, reasons = detector.score_persons(a, b, 0)
    assert reasons["last_name"]["score"] == 1.0


def test_gender_conflict_lowers_confidence(detector):
    same, _ = detector.score_persons(_ivan(), _ivan(), 0)
    conflict, reasons = detector.score_persons(_ivan(), _ivan(gender="F"), 0)
    assert conflict == pytest.approx(same * 0.5)
    assert "gender_conflict" in reasons


def test_deceased_profile_uses_death_signals(detector):
    confidence, reasons = detector.score_persons(_ivan(death_date="1970-01-02"), _ivan(death_date="1970-01-02"), 0)
    assert reasons["profile"] == "deceased"
    assert "death_date" in reasons
    assert confidence == pytest.approx(0.70)


def test_shared_relatives_are_counted(store, detector):
    a = store.add_person(_ivan()).id
    b = store.add_person(_ivan()).id
    mother = store.add_person(Person(first_name="Mother", gender="F")).id
    store.add_edge(mother, a, "parent")
    store.add_edge(mother, b, "parent")
    assert detector.shared_relatives(a, b) == {mother}
    confidence, reasons = detector.score(a, b)
    assert reasons["shared_relatives"]["count"] == 1
    assert confidence > 0.65


def test_three_shared_relatives_raise_a_stored_pair_score(store, detector):
    a = store.add_person(_ivan()).id
    b = store.add_person(_ivan()).id
    alone, reasons = detector.score(a, b)
    assert "shared_relatives" not in reasons

    father = store.add_person(Person(first_name="Father", gender="M")).id
    mother = store.add_person(Person(first_name="Mother", gender="F")).id
    wife = store.add_person(Person(first_name="Wife", gender="F")).id
    for pid in (a, b):
        store.add_edge(father, pid, "parent")
        store.add_edge(mother, pid, "parent")
        store.add_edge(pid, wife, "spouse")

    together, reasons = detector.score(a, b)
    assert reasons["shared_relatives"]["count"] == 3
    assert reasons["shared_relatives"]["score"] == 1.0
    assert together == pytest.approx(alone + 0.2)


def test_nickname_cross_matches_first_name(detector):
    a = Person.from_dict({"first_name": "Theodora", "nickname": "Zizi", "last_name": "Orlova", "gender": "F", "birth_date": "1931-02-03"})
    b = Person.from_dict({"first_name": "Zizi", "last_name": "Orlova", "gender": "F", "birth_date": "1931-02-03"})
    confidence, reasons = detector.score_persons(a, b, 0)
    assert reasons["first_name"]["score"] == 1.0
    assert confidence == pytest.approx(0.55)

    without, reasons = detector.score_persons(replace(a, nickname=None), b, 0)
    assert "first_name" not in reasons
    assert without == pytest.approx(0.35)


def test_scan_records_candidates_and_skips_known_pairs(store, detector):
    a = store.add_person(_ivan()).id
    b = store.add_person(_ivan()).id
    store.add_person(Person.from_dict({"first_name": "Maria", "last_name": "Petrova", "gender": "F"}))
    petr = store.add_person(_ivan(first_name="Petr")).id
    petr_again = store.add_person(_ivan(first_name="Petr")).id
    # connected profiles are never proposed
    store.add_edge(petr, petr_again, "sibling")

    report = detector.scan()
    assert not report.cancelled
    assert [(d.profile_a, d.profile_b) for d in report] == [tuple(sorted((a, b)))]
    assert report[0].status == "pending"
    assert not (store.root / CHECKPOINT_FILE).exists()

    again = detector.scan()
    assert list(again) == []
    assert len(store.list_duplicates()) == 1
    assert detector.queue()[0].id == report[0].id


def test_scan_cancel_checkpoints_and_resumes(store, detector):
    store.add_person(_ivan())
    store.add_person(_ivan())
    store.add_person(_ivan(first_name="Oleg"))
    detector.config.checkpoint_interval = 1

    first = detector.scan(cancel_event=CancelAfter(1))
    assert first.cancelled and first.pairs_checked == 1
    assert (store.root / CHECKPOINT_FILE).exists()

    rest = detector.scan(cancel_event=threading.Event())
    assert not rest.cancelled
    assert rest.pairs_checked == 2
    assert len(store.list_duplicates()) == 1
    assert not (store.root / CHECKPOINT_FILE).exists()


def test_confirm_merges_once(store, detector, events):
    merged = []
    events.subscribe(PROFILES_MERGED, lambda name, payload: merged.append(payload))
    a = store.add_person(_ivan()).id
    b = store.add_person(_ivan(email="ivan@example.org")).id
    child = store.add_person(Person(first_name="Child")).id
    store.add_edge(b, child, "parent")
    dup = detector.scan()[0]

    results = []

    def confirm():
        results.append(detector.resolve(dup.id, CONFIRM, reviewer="r1", kept_profile_id=a))

    threads = [threading.Thread(target=confirm) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)

    assert [r.status for r in results] == ["confirmed", "confirmed"]
    assert len(merged) == 1 and merged[0]["kept_id"] == a
    assert len(store.merge_history()) == 1
    assert store.parents_of(child) == (a,)
    assert store.get_person(a).email == "ivan@example.org"
    assert store.get_person(b).merged_into == a
    assert store.get_duplicate(dup.id).kept_profile_id == a


def test_reject_and_bad_actions(store, detector):
    a = store.add_person(_ivan()).id
    b = store.add_person(_ivan()).id
    dup = detector.scan()[0]
    with pytest.raises(ValueError):
        detector.resolve(dup.id, "maybe")
    with pytest.raises(ValueError):
        detector.resolve(dup.id, CONFIRM, kept_profile_id="stranger")
    with pytest.raises(DuplicateNotFound):
        detector.resolve("missing", REJECT)

    rejected = detector.resolve(dup.id, REJECT, reviewer="r1", notes="different people")
    assert rejected.status == "rejected"
    assert detector.resolve(dup.id, CONFIRM).status == "rejected"
    assert store.get_person(a).merged_into is None and store.get_person(b).merged_into is None
    assert detector.queue() == []
    assert detector.queue("rejected")[0].resolution_notes == "different people"


def test_failed_merge_keeps_record_pending(store, detector):
    a = store.add_person(_ivan()).id
    b = store.add_person(_ivan(gender="F")).id
    dup = store.save_duplicate(PotentialDuplicate(profile_a=a, profile_b=b, confidence_score=0.6))
    with pytest.raises(MergeConflict):
        detector.resolve(dup.id, CONFIRM, reviewer="r1")
    record = store.get_duplicate(dup.id)
    assert record.status == "pending"
    assert "gender" in record.last_error
    assert store.get_person(b).merged_into is None


def test_describe_reasons_strongest_first(detector):
    confidence, reasons = detector.score_persons(_ivan(), _ivan(), 0)
    dup = PotentialDuplicate(profile_a="a", profile_b="b", confidence_score=confidence, match_reasons=reasons)
    lines = detector.describe_reasons(dup)
    assert lines[0].startswith("first name") or lines[0].startswith("birth date")
    assert len(lines) == 4


def test_queue_filters_and_pages(store, detector):
    ids = [store.add_person(Person(first_name=f"P{i}")).id for i in range(6)]
    for score, (a, b), deceased in ((0.9, ids[0:2], False), (0.7, ids[2:4], True), (0.55, ids[4:6], True)):
        store.save_duplicate(PotentialDuplicate(profile_a=a, profile_b=b, confidence_score=score, is_deceased_pair=deceased))

    assert [d.confidence_score for d in detector.queue()] == [0.9, 0.7, 0.55]
    assert [d.confidence_score for d in detector.queue(min_confidence=0.6, max_confidence=0.8)] == [0.7]
    assert [d.confidence_score for d in detector.queue(deceased_only=True)] == [0.7, 0.55]
    assert [d.confidence_score for d in detector.queue(limit=1, offset=1)] == [0.7]
    assert len(detector.queue(sort_by="created")) == 3
    with pytest.raises(ValueError):
        detector.queue(sort_by="name")
