"""
Ordered in-memory index.

An OrderedIndex keeps (key, value) pairs sorted by a comparable sort key
derived from each key. Lookups use binary search; range iteration is
linear in the number of results.

Invariants:
    - Entries are always sorted by key_func(key)
    - Entries with equal keys keep insertion order
    - A unique index never holds two entries with equal keys

How to change safely:
    - key_func must be a pure function producing mutually comparable values
    - Keep range() bounds inclusive; callers rely on lower == upper for
      exact lookups
"""

from __future__ import annotations

from bisect import bisect_left, bisect_right
from collections.abc import Callable, Iterator
from typing import Any, Generic, TypeVar

from ..common.uuids import Uuid, uuid_or_null

K = TypeVar("K")
V = TypeVar("V")


class StoreError(Exception):
    """Base exception for store operations."""
    pass


class DuplicateKeyError(StoreError):
    """Key already present in an index that disallows duplicates."""
    pass


class StoreInconsistencyError(StoreError):
    """The indices of a table disagree; a broken invariant."""
    pass


def uuid_key(value: Uuid | None) -> tuple:
    """Identifier ordering: numeric id, then root, NULL lowest."""
    return uuid_or_null(value).sort_key()


def time_key(value: int) -> int:
    return int(value)


def text_key(value: str) -> str:
    """Case-insensitive codepoint ordering."""
    return value.casefold()


class OrderedIndex(Generic[K, V]):
    """Sorted multimap from keys to values.

    Example:
        >>> index = OrderedIndex(key_func=text_key)
        >>> index.insert("Bob", 1)
        >>> index.insert("alice", 2)
        >>> index.range()
        [2, 1]
    """

    def __init__(
        self,
        key_func: Callable[[K], Any] = lambda key: key,
        unique: bool = False,
    ) -> None:
        """Create an empty index.

        Args:
            key_func: Maps a key to its sort key
            unique: Reject inserts whose key is already present
        """
        self.key_func = key_func
        self.unique = unique
        self._keys: list[Any] = []
        self._values: list[V] = []

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[V]:
        return iter(list(self._values))

    def __contains__(self, key: K) -> bool:
        sort_key = self.key_func(key)
        pos = bisect_left(self._keys, sort_key)
        return pos < len(self._keys) and self._keys[pos] == sort_key

    def insert(self, key: K, value: V) -> None:
        """Insert a value under key.

        Raises:
            DuplicateKeyError: If the index is unique and key is present
        """
        sort_key = self.key_func(key)
        if self.unique and key in self:
            raise DuplicateKeyError(f"Duplicate key: {key}")
        pos = bisect_right(self._keys, sort_key)
        self._keys.insert(pos, sort_key)
        self._values.insert(pos, value)

    def remove(self, key: K, value: V) -> bool:
        """Remove one entry matching both key and value.

        Returns:
            True if an entry was removed
        """
        sort_key = self.key_func(key)
        lo = bisect_left(self._keys, sort_key)
        hi = bisect_right(self._keys, sort_key)
        for pos in range(lo, hi):
            if self._values[pos] == value:
                del self._keys[pos]
                del self._values[pos]
                return True
        return False

    def at(self, key: K) -> V | None:
        """First value stored under key, or None."""
        sort_key = self.key_func(key)
        pos = bisect_left(self._keys, sort_key)
        if pos < len(self._keys) and self._keys[pos] == sort_key:
            return self._values[pos]
        return None

    def first(self) -> V | None:
        return self._values[0] if self._values else None

    def last(self) -> V | None:
        return self._values[-1] if self._values else None

    def range(
        self,
        lower: K | None = None,
        upper: K | None = None,
        descending: bool = False,
    ) -> list[V]:
        """Values whose keys lie in [lower, upper].

        Args:
            lower: Inclusive lower bound, None for unbounded
            upper: Inclusive upper bound, None for unbounded
            descending: Return the values in reverse key order

        Returns:
            Matching values in key order
        """
        lo = 0 if lower is None else bisect_left(self._keys, self.key_func(lower))
        hi = len(self._keys) if upper is None else bisect_right(self._keys, self.key_func(upper))
        if lo >= hi:
            return []
        found = self._values[lo:hi]
        if descending:
            found.reverse()
        return found
