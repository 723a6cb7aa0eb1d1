"""
Structured identifiers for chat entities and relay bundles.

A Uuid is a numeric id plus an optional parent ("root") Uuid. Servers root
the ids they mint at their own server id, so two servers drawing the same
number still produce different identifiers.

Invariants:
    - Ordering is total: NULL sorts below every non-null id
    - Ties on the numeric id are broken by comparing roots recursively
    - Generators never hand out the same id twice

How to change safely:
    - sort_key() backs the identifier index; keep it consistent with __lt__
    - The string form is used on the wire and in SQLite, don't change it
"""

from __future__ import annotations

import functools
import random
import time
from dataclasses import dataclass
from typing import Any

ID_MAX = 2**31 - 1


class UuidError(Exception):
    """Base exception for identifier operations."""
    pass


class ExhaustedRangeError(UuidError):
    """A bounded generator reached its ceiling."""
    pass


@functools.total_ordering
@dataclass(frozen=True, eq=True)
class Uuid:
    """Hierarchical identifier.

    Attributes:
        root: Parent identifier (None for top-level ids)
        id: Numeric component

    Example:
        >>> server = Uuid(None, 1)
        >>> Uuid(server, 42)
        Uuid('[UUID:1.42]')
    """
    root: Uuid | None
    id: int

    def __post_init__(self) -> None:
        # A NULL root orders like no root, so it must also compare like one.
        if self.root is not None and self.root.is_null:
            object.__setattr__(self, "root", None)

    def sort_key(self) -> tuple:
        """Tuple whose ordering matches identifier ordering."""
        if self.is_null:
            return (0,)
        root_key = self.root.sort_key() if self.root is not None else (0,)
        return (1, self.id, root_key)

    @property
    def is_null(self) -> bool:
        return self.root is None and self.id == 0

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Uuid):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    def parts(self) -> list[int]:
        """Numeric components from the outermost root down to this id."""
        chain = self.root.parts() if self.root is not None else []
        chain.append(self.id)
        return chain

    def __str__(self) -> str:
        return "[UUID:" + ".".join(str(p) for p in self.parts()) + "]"

    def __repr__(self) -> str:
        return f"Uuid('{self}')"

    def to_json(self) -> str:
        return ".".join(str(p) for p in self.parts())

    @classmethod
    def parse(cls, text: str) -> Uuid:
        """Parse "[UUID:1.2.3]" or "1.2.3".

        Raises:
            ValueError: If the text is not a dotted list of integers
        """
        body = text.strip()
        if body.startswith("[UUID:") and body.endswith("]"):
            body = body[len("[UUID:"):-1]
        if not body:
            raise ValueError(f"Invalid uuid: {text!r}")

        current: Uuid | None = None
        for token in body.split("."):
            try:
                value = int(token)
            except ValueError:
                raise ValueError(f"Invalid uuid: {text!r}")
            current = cls(current, value)
        return current

    @classmethod
    def from_json(cls, value: Any) -> Uuid:
        if value is None:
            return NULL_UUID
        if not isinstance(value, str):
            raise ValueError(f"Invalid uuid: {value!r}")
        return cls.parse(value)


NULL_UUID = Uuid(None, 0)


def uuid_or_null(value: Uuid | None) -> Uuid:
    return NULL_UUID if value is None else value


class LinearUuidGenerator:
    """Sequential generator over [start, end].

    Used for counters that must only move forward, such as the user
    generation marker and relay bundle ids.
    """

    def __init__(self, root: Uuid | None, start: int, end: int) -> None:
        if start > end:
            raise ValueError(f"start ({start}) must not exceed end ({end})")
        self.root = root
        self.end = end
        self._next = start

    def make(self) -> Uuid:
        """Return the next id.

        Raises:
            ExhaustedRangeError: Once the value `end` has been returned
        """
        if self._next > self.end:
            raise ExhaustedRangeError(
                f"Generator rooted at {self.root} exhausted at {self.end}"
            )
        value = self._next
        self._next += 1
        return Uuid(self.root, value)


class RandomUuidGenerator:
    """Random ids rooted at a server id.

    Collisions are possible; callers check candidates against the store
    and draw again.
    """

    def __init__(self, root: Uuid, seed: int | None = None) -> None:
        self.root = root
        self.seed = int(time.time() * 1000) if seed is None else seed
        self._rng = random.Random(self.seed)

    def make(self) -> Uuid:
        return Uuid(self.root, self._rng.randint(1, ID_MAX))
