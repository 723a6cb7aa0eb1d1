"""
Common value types shared by every chat server component.

Invariants:
    - Users, conversations and messages share one identifier space
    - Entity records are frozen; updates replace the stored record
"""

from .entities import (
    RELAY_PASSWORD_HASH,
    Conversation,
    ConversationSummary,
    Message,
    User,
    hash_password,
    now_ms,
    verify_password,
)
from .uuids import (
    NULL_UUID,
    ExhaustedRangeError,
    LinearUuidGenerator,
    RandomUuidGenerator,
    Uuid,
    UuidError,
)

__all__ = [
    "Uuid",
    "NULL_UUID",
    "UuidError",
    "ExhaustedRangeError",
    "LinearUuidGenerator",
    "RandomUuidGenerator",
    "User",
    "Conversation",
    "ConversationSummary",
    "Message",
    "hash_password",
    "verify_password",
    "RELAY_PASSWORD_HASH",
    "now_ms",
]
