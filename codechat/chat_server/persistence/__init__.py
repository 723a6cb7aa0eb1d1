"""
Durable write-through storage for chat entities.

This module provides:
- PersistenceSink protocol, PersistenceError and StoredState (load result)
- SqlitePersistence (single SQLite file)
- NullPersistence (in-memory only deployments and tests)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import NullPersistence, PersistenceError, PersistenceSink, StoredState
from .sqlite import SqlitePersistence

if TYPE_CHECKING:
    from ..config import StorageConfig


def create_persistence(config: "StorageConfig") -> PersistenceSink:
    """Build the sink selected by configuration.

    Raises:
        ValueError: If the backend is not supported
    """
    from pathlib import Path

    from ..config import PersistenceBackend

    if config.backend == PersistenceBackend.SQLITE:
        return SqlitePersistence(
            db_path=str(Path(config.data_dir) / config.db_file),
            wal_mode=config.wal_mode,
            busy_timeout_ms=config.busy_timeout_ms,
        )
    elif config.backend == PersistenceBackend.NONE:
        return NullPersistence()
    else:
        raise ValueError(f"Unsupported persistence backend: {config.backend}")


__all__ = [
    "PersistenceSink",
    "PersistenceError",
    "StoredState",
    "SqlitePersistence",
    "NullPersistence",
    "create_persistence",
]
