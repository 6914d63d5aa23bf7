import os
import sys
import tempfile
import shutil
import atexit
from pathlib import Path

import pytest

# Ensure repo root is on sys.path so tests can import the package directly
root = Path(__file__).resolve().parent.parent
if str(root) not in sys.path:
    sys.path.insert(0, str(root))

from kinship_py.config import Config
from kinship_py.classifier import RelationshipClassifier
from kinship_py.events import EventBus
from kinship_py.models import Person
from kinship_py.storage import GraphStore

_kinship_test_data_dir = None


def pytest_configure(config):
    """Create a session-scoped temporary data directory and point
    KINSHIP_DATA_DIR at it, so the app and any subprocesses never write
    into the repository."""
    global _kinship_test_data_dir
    td = tempfile.mkdtemp(prefix="kinship_test_data_")
    _kinship_test_data_dir = td
    os.environ.setdefault("KINSHIP_DATA_DIR", td)


def pytest_unconfigure(config):
    global _kinship_test_data_dir
    td = _kinship_test_data_dir
    _kinship_test_data_dir = None
    if td and os.path.exists(td):
        try:
            shutil.rmtree(td)
        except OSError:
            # don't raise during pytest shutdown
            pass


def _atexit_cleanup():
    td = _kinship_test_data_dir
    if td and os.path.exists(td):
        shutil.rmtree(td, ignore_errors=True)


atexit.register(_atexit_cleanup)


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def store(tmp_path, events):
    st = GraphStore(tmp_path / "data", Config(data_dir=tmp_path / "data"), events)
    yield st
    st.close()


@pytest.fixture
def classifier(store):
    return RelationshipClassifier(store)


@pytest.fixture
def person(store):
    """Factory: person("Ivan", "M", last_name="Petrov") -> id."""

    def make(first_name, gender=None, **fields):
        return store.add_person(Person.from_dict(dict(fields, first_name=first_name, gender=gender))).id

    return make


@pytest.fixture
def family(store, person):
    """A small three-generation family.

        GF + GM
        ├── Dad + Mom ── S1 (M), S2 (F)
        │   Dad + Other ── H1 (M)
        └── Aunt + Uncle ── Cousin (F) ── CousinKid (M)
    """
    ids = {}
    for name, gender in (
        ("GF", "M"), ("GM", "F"), ("Dad", "M"), ("Mom", "F"), ("Other", "F"),
        ("Aunt", "F"), ("Uncle", "M"), ("S1", "M"), ("S2", "F"), ("H1", "M"),
        ("Cousin", "F"), ("CousinKid", "M"),
    ):
        ids[name] = person(name, gender, last_name="Family")
    for parent, child in (
        ("GF", "Dad"), ("GM", "Dad"), ("GF", "Aunt"), ("GM", "Aunt"),
        ("Dad", "S1"), ("Mom", "S1"), ("Dad", "S2"), ("Mom", "S2"),
        ("Dad", "H1"), ("Other", "H1"),
        ("Aunt", "Cousin"), ("Uncle", "Cousin"), ("Cousin", "CousinKid"),
    ):
        store.add_edge(ids[parent], ids[child], "parent")
    store.add_edge(ids["GF"], ids["GM"], "spouse")
    store.add_edge(ids["Dad"], ids["Mom"], "spouse")
    store.add_edge(ids["Aunt"], ids["Uncle"], "spouse")
    return ids
