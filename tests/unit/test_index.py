"""
Unit tests for OrderedIndex.

Tests cover:
- Sorted insertion and stable duplicates
- Unique indices
- Inclusive range queries
- Removal of one (key, value) entry
"""

import pytest

from codechat.chat_server.common.uuids import NULL_UUID, Uuid
from codechat.chat_server.store import DuplicateKeyError, OrderedIndex
from codechat.chat_server.store.index import text_key, time_key, uuid_key


class TestOrderedIndex:
    """Tests for OrderedIndex."""

    def test_insert_keeps_order(self):
        index = OrderedIndex(time_key)
        for t, value in [(30, "c"), (10, "a"), (20, "b")]:
            index.insert(t, value)

        assert list(index) == ["a", "b", "c"]
        assert index.first() == "a"
        assert index.last() == "c"
        assert len(index) == 3

    def test_equal_keys_keep_insertion_order(self):
        """Duplicates of a non-unique index stay in insertion order."""
        index = OrderedIndex(time_key)
        index.insert(5, "first")
        index.insert(5, "second")
        index.insert(1, "zero")

        assert index.range(5, 5) == ["first", "second"]

    def test_unique_rejects_duplicate(self):
        index = OrderedIndex(uuid_key, unique=True)
        key = Uuid(None, 1)
        index.insert(key, 0)

        with pytest.raises(DuplicateKeyError):
            index.insert(Uuid(None, 1), 1)
        assert len(index) == 1

    def test_range_is_inclusive(self):
        index = OrderedIndex(time_key)
        for t in range(10):
            index.insert(t, t)

        assert index.range(3, 5) == [3, 4, 5]
        assert index.range(None, 2) == [0, 1, 2]
        assert index.range(8, None) == [8, 9]
        assert index.range(3, 5, descending=True) == [5, 4, 3]

    def test_range_empty_when_inverted(self):
        index = OrderedIndex(time_key)
        index.insert(1, "a")
        assert index.range(5, 2) == []

    def test_at_and_contains(self):
        index = OrderedIndex(text_key)
        index.insert("Bob", 1)

        assert "bob" in index
        assert index.at("BOB") == 1
        assert index.at("alice") is None
        assert "alice" not in index

    def test_text_key_is_case_insensitive(self):
        index = OrderedIndex(text_key)
        index.insert("bob", 1)
        index.insert("Alice", 2)
        index.insert("carol", 3)

        assert list(index) == [2, 1, 3]

    def test_uuid_key_puts_null_first(self):
        index = OrderedIndex(uuid_key)
        index.insert(Uuid(None, 2), "two")
        index.insert(NULL_UUID, "null")
        index.insert(Uuid(None, 1), "one")

        assert list(index) == ["null", "one", "two"]

    def test_remove_matches_value(self):
        """remove() drops only the entry with the matching value."""
        index = OrderedIndex(time_key)
        index.insert(5, "a")
        index.insert(5, "b")

        assert index.remove(5, "b") is True
        assert index.range(5, 5) == ["a"]
        assert index.remove(5, "missing") is False
        assert index.remove(6, "a") is False
