"""
Relay synchronization for the chat server.

The synchronizer merges remote bundles through the same Controller path
as local writes, so replicated entities are indistinguishable from local
ones once admitted.

Invariants:
    - Merging is idempotent (same bundle merged twice has no effect)
    - The relay cursor never moves backwards
"""

from .synchronizer import (
    MergeResult,
    PollResult,
    RelaySynchronizer,
    SynchronizerError,
)

__all__ = [
    "RelaySynchronizer",
    "MergeResult",
    "PollResult",
    "SynchronizerError",
]
