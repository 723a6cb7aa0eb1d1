"""
In-memory storage for chat entities.

This module provides:
- OrderedIndex: sorted multimap with inclusive range queries
- EntityTable: three mutually consistent indices over one record arena

Invariants:
    - Identifier indices are unique, time and text indices are not
    - A table's indices never disagree on membership
"""

from .index import (
    DuplicateKeyError,
    OrderedIndex,
    StoreError,
    StoreInconsistencyError,
    text_key,
    time_key,
    uuid_key,
)
from .table import EntityTable

__all__ = [
    "OrderedIndex",
    "EntityTable",
    "StoreError",
    "DuplicateKeyError",
    "StoreInconsistencyError",
    "uuid_key",
    "time_key",
    "text_key",
]
