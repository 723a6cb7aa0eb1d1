"""
Chat entity records: users, conversations and messages.

Entities are immutable values. The single exception is a message's `next`
link, which is patched once when the following message in the same
conversation is created; that happens by storing a replaced copy through
Model.update_message, never by mutating a shared object.

Timestamps are Unix milliseconds.
"""

from __future__ import annotations

import hashlib
import hmac
import os
import time
from dataclasses import dataclass, field
from typing import Any

from .uuids import NULL_UUID, Uuid

PBKDF2_ITERATIONS = 200_000

# Stored for users that arrive through the relay. Never a hash_password()
# result, so no password verifies against it.
RELAY_PASSWORD_HASH = "!relay"


def now_ms() -> int:
    return int(time.time() * 1000)


def hash_password(password: str, salt: bytes | None = None) -> str:
    """Hash a password with PBKDF2-HMAC-SHA256.

    Args:
        password: Plaintext password
        salt: Optional salt; a random 16-byte salt is used if omitted

    Returns:
        "<salt hex>$<digest hex>"
    """
    if salt is None:
        salt = os.urandom(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PBKDF2_ITERATIONS)
    return f"{salt.hex()}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    """Check a plaintext password against a hash_password() result."""
    if stored == RELAY_PASSWORD_HASH:
        return False
    try:
        salt_hex, _ = stored.split("$", 1)
        salt = bytes.fromhex(salt_hex)
    except ValueError:
        return False
    return hmac.compare_digest(hash_password(password, salt), stored)


@dataclass(frozen=True)
class User:
    """A chat user.

    Attributes:
        id: Unique identifier
        name: Display name (unique case-insensitively for local users)
        created_at: Creation timestamp (Unix ms)
        password_hash: Credential produced by hash_password()
    """
    id: Uuid
    name: str
    created_at: int
    password_hash: str = field(repr=False, default="")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id.to_json(),
            "name": self.name,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class ConversationSummary:
    id: Uuid
    title: str
    owner: Uuid
    created_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id.to_json(),
            "title": self.title,
            "owner": self.owner.to_json(),
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class Conversation:
    """A conversation owned by a user.

    Attributes:
        id: Unique identifier
        owner: Id of the owning user (must exist at creation)
        created_at: Creation timestamp (Unix ms)
        title: Conversation title
    """
    id: Uuid
    owner: Uuid
    created_at: int
    title: str

    @property
    def summary(self) -> ConversationSummary:
        return ConversationSummary(
            id=self.id,
            title=self.title,
            owner=self.owner,
            created_at=self.created_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return self.summary.to_dict()


@dataclass(frozen=True)
class Message:
    """A message in a conversation chain.

    Messages of one conversation form a singly-linked chain in creation
    order: `previous` is fixed at creation, `next` starts as NULL and is
    set once when the following message arrives.

    Attributes:
        id: Unique identifier
        next: Id of the following message (NULL for the tail)
        previous: Id of the preceding message (NULL for the head)
        created_at: Creation timestamp (Unix ms)
        author: Id of the authoring user
        conversation: Id of the conversation
        content: Message body
    """
    id: Uuid
    next: Uuid
    previous: Uuid
    created_at: int
    author: Uuid
    conversation: Uuid
    content: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id.to_json(),
            "next": None if self.next.is_null else self.next.to_json(),
            "previous": None if self.previous.is_null else self.previous.to_json(),
            "created_at": self.created_at,
            "author": self.author.to_json(),
            "conversation": self.conversation.to_json(),
            "content": self.content,
        }

    @property
    def is_tail(self) -> bool:
        return self.next == NULL_UUID
