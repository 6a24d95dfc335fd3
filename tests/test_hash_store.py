"""Tests for the hash namespaces."""

from apfleet.store.hashes import HashStore
from apfleet.store.models import HashEntry


def test_hset_then_hget(hashes: HashStore):
    hashes.hset("ns", "a", {"x": 1})
    assert hashes.hget("ns", "a") == {"x": 1}


def test_hget_missing(hashes: HashStore):
    assert hashes.hget("ns", "missing") is None


def test_hset_overwrites(hashes: HashStore):
    hashes.hset("ns", "a", {"x": 1})
    hashes.hset("ns", "a", {"x": 2})
    assert hashes.hget("ns", "a") == {"x": 2}


def test_namespaces_are_separate(hashes: HashStore):
    hashes.hset("one", "k", 1)
    hashes.hset("two", "k", 2)
    assert hashes.hgetall("one") == {"k": 1}
    assert hashes.hgetall("two") == {"k": 2}


def test_hdel_multiple(hashes: HashStore):
    for key in ("a", "b", "c"):
        hashes.hset("ns", key, key)
    assert hashes.hdel("ns", "a", "c", "nope") == 2
    assert hashes.hgetall("ns") == {"b": "b"}


def test_hdel_nothing(hashes: HashStore):
    assert hashes.hdel("ns") == 0


def test_corrupt_value_is_skipped(hashes: HashStore, session):
    session.add(HashEntry(namespace="ns", key="bad", value="{not json"))
    session.commit()
    hashes.hset("ns", "good", [1, 2])
    assert hashes.hget("ns", "bad") is None
    assert hashes.hgetall("ns") == {"good": [1, 2]}
