"""
Multi-index entity table.

Each entity type lives in one EntityTable: an arena of record slots plus
three OrderedIndex views over it (by id, by creation time, by text).
The indices hold slot numbers, so replacing a record in its slot is
immediately visible through every view without touching the indices.

Invariants:
    - The three indices always contain exactly the same slots
    - The id index is unique
    - update() never changes a record's id, time or text key

How to change safely:
    - Any new index must be added to add() and to its rollback path
    - Never hand out the internal slot list; callers get records only
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Generic, TypeVar

from ..common.uuids import Uuid
from .index import (
    OrderedIndex,
    StoreError,
    StoreInconsistencyError,
    text_key,
    time_key,
    uuid_key,
)

logger = logging.getLogger(__name__)

E = TypeVar("E")


class EntityTable(Generic[E]):
    """Arena of records with id, time and text indices.

    Example:
        >>> users = EntityTable(
        ...     id_of=lambda u: u.id,
        ...     time_of=lambda u: u.created_at,
        ...     text_of=lambda u: u.name,
        ... )
        >>> users.add(user)
        >>> users.get(user.id) == user
        True
    """

    def __init__(
        self,
        id_of: Callable[[E], Uuid],
        time_of: Callable[[E], int],
        text_of: Callable[[E], str],
        name: str = "entity",
    ) -> None:
        self.name = name
        self.id_of = id_of
        self.time_of = time_of
        self.text_of = text_of
        self._slots: list[E] = []
        self._by_id: OrderedIndex[Uuid, int] = OrderedIndex(uuid_key, unique=True)
        self._by_time: OrderedIndex[int, int] = OrderedIndex(time_key)
        self._by_text: OrderedIndex[str, int] = OrderedIndex(text_key)

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, entity_id: Uuid) -> bool:
        return entity_id in self._by_id

    def add(self, entity: E) -> None:
        """Insert a record into all three indices.

        Raises:
            DuplicateKeyError: If the id is already present (nothing changes)
            StoreInconsistencyError: If a secondary index rejected the record
        """
        entity_id = self.id_of(entity)
        slot = len(self._slots)

        self._by_id.insert(entity_id, slot)
        self._slots.append(entity)

        timed = False
        try:
            self._by_time.insert(self.time_of(entity), slot)
            timed = True
            self._by_text.insert(self.text_of(entity), slot)
        except Exception as e:
            if timed:
                self._by_time.remove(self.time_of(entity), slot)
            self._by_id.remove(entity_id, slot)
            self._slots.pop()
            logger.error(
                "Index insert failed, rolled back",
                extra={"table": self.name, "id": str(entity_id)},
            )
            raise StoreInconsistencyError(
                f"{self.name} {entity_id} could not be indexed: {e}"
            ) from e

    def update(self, entity: E) -> None:
        """Replace the stored record with the same id in place.

        Raises:
            StoreError: If no record has this id
            StoreInconsistencyError: If an ordering key would change
        """
        entity_id = self.id_of(entity)
        slot = self._by_id.at(entity_id)
        if slot is None:
            raise StoreError(f"Unknown {self.name}: {entity_id}")

        current = self._slots[slot]
        if time_key(self.time_of(current)) != time_key(self.time_of(entity)) or (
            text_key(self.text_of(current)) != text_key(self.text_of(entity))
        ):
            raise StoreInconsistencyError(
                f"Update of {self.name} {entity_id} would change an ordering key"
            )
        self._slots[slot] = entity

    def get(self, entity_id: Uuid) -> E | None:
        slot = self._by_id.at(entity_id)
        return None if slot is None else self._slots[slot]

    def by_id(
        self,
        lower: Uuid | None = None,
        upper: Uuid | None = None,
        descending: bool = False,
    ) -> list[E]:
        return self._records(self._by_id.range(lower, upper, descending))

    def by_time(
        self,
        start: int | None = None,
        end: int | None = None,
        descending: bool = False,
    ) -> list[E]:
        return self._records(self._by_time.range(start, end, descending))

    def by_text(
        self,
        lower: str | None = None,
        upper: str | None = None,
        descending: bool = False,
    ) -> list[E]:
        return self._records(self._by_text.range(lower, upper, descending))

    def filter_text(self, match: str | Callable[[str], bool]) -> list[E]:
        """Records whose text matches, in text order.

        Args:
            match: Case-insensitive substring, or a predicate over the text
        """
        if isinstance(match, str):
            needle = match.casefold()

            def predicate(text: str) -> bool:
                return needle in text.casefold()
        else:
            predicate = match

        return [
            self._slots[slot]
            for slot in self._by_text
            if predicate(self.text_of(self._slots[slot]))
        ]

    def all(self) -> list[E]:
        return self.by_id()

    def _records(self, slots: list[int]) -> list[Any]:
        return [self._slots[slot] for slot in slots]
