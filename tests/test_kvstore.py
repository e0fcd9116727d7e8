"""Tests for the JSON key-value store."""

import pytest

from menureader.exceptions import StorageError
from menureader.storage import KeyValueStore


@pytest.fixture
def store(tmp_path):
    kv = KeyValueStore(db_path=tmp_path / "test.db")
    yield kv
    kv.close()


def test_get_missing_returns_default(store):
    assert store.get("nope") is None
    assert store.get("nope", []) == []


def test_set_and_get(store):
    store.set("userProfile", {"targetLanguage": "ja", "allergens": ["えび"]})
    assert store.get("userProfile") == {"targetLanguage": "ja", "allergens": ["えび"]}


def test_overwrite(store):
    store.set("k", 1)
    store.set("k", 2)
    assert store.get("k") == 2
    assert store.keys() == ["k"]


def test_set_many_atomic_on_serialisation_failure(store):
    store.set("a", 1)
    with pytest.raises(StorageError):
        store.set_many({"a": 2, "b": object()})
    assert store.get("a") == 1
    assert store.get("b") is None


def test_delete(store):
    store.set("k", "v")
    assert store.delete("k") is True
    assert store.delete("k") is False
    assert store.get("k") is None


def test_size_bytes_counts_utf8(store):
    assert store.size_bytes() == 0
    store.set("a", "é")  # stored as '"é"': 4 bytes in UTF-8
    store.set("b", [1, 2])
    assert store.size_bytes("a") == 4
    assert store.size_bytes() == 4 + len("[1, 2]")


def test_persists_across_instances(tmp_path):
    first = KeyValueStore(tmp_path / "db.sqlite")
    first.set("menuHistory", [{"id": "x"}])
    first.close()

    second = KeyValueStore(tmp_path / "db.sqlite")
    assert second.get("menuHistory") == [{"id": "x"}]
    second.close()
