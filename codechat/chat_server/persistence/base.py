"""
Persistence sink protocol.

The chat server keeps its working set in memory; a persistence sink
receives a write-through call for every admitted entity so the data
survives restarts. The in-memory Model is only updated after the sink
accepted the write. On startup load() hands everything back so the
Model can be restored before any new write arrives.

Invariants:
    - Sinks raise PersistenceError, never anything that ends the process
    - write_message persists the patched `next` of the previous tail in
      the same transaction as the new message
    - load() returns each conversation's messages in chain order

How to change safely:
    - New sinks must implement PersistenceSink
    - Keep the call-per-entity granularity; the Controller relies on it
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from ..common.entities import Conversation, Message, User
from ..common.uuids import Uuid


class PersistenceError(Exception):
    """A persistence sink rejected or failed a write."""
    pass


@dataclass
class StoredState:
    """Everything a sink holds, in the order the Model must admit it.

    Attributes:
        users: Users in creation order
        conversations: Conversations in creation order
        memberships: (conversation id, user id) pairs in creation order
        messages: Messages grouped per conversation, each group head to tail
    """
    users: list[User] = field(default_factory=list)
    conversations: list[Conversation] = field(default_factory=list)
    memberships: list[tuple[Uuid, Uuid]] = field(default_factory=list)
    messages: list[Message] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.users or self.conversations or self.messages)


@runtime_checkable
class PersistenceSink(Protocol):
    """Write-through target for admitted entities."""

    @abstractmethod
    async def initialize(self) -> None:
        ...

    @abstractmethod
    async def write_user(self, user: User) -> None:
        ...

    @abstractmethod
    async def write_conversation(self, conversation: Conversation) -> None:
        ...

    @abstractmethod
    async def write_message(self, message: Message, previous: Message | None) -> None:
        """Persist a new message.

        Args:
            message: The message being created
            previous: The conversation's old tail with `next` already set
                to message.id, or None for the first message
        """
        ...

    @abstractmethod
    async def write_membership(self, conversation_id: Uuid, user_id: Uuid) -> None:
        ...

    @abstractmethod
    async def load(self) -> StoredState:
        """Read back every persisted entity."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class NullPersistence:
    """Sink that accepts every write and stores nothing."""

    async def initialize(self) -> None:
        pass

    async def write_user(self, user: User) -> None:
        pass

    async def write_conversation(self, conversation: Conversation) -> None:
        pass

    async def write_message(self, message: Message, previous: Message | None) -> None:
        pass

    async def write_membership(self, conversation_id: Uuid, user_id: Uuid) -> None:
        pass

    async def load(self) -> StoredState:
        return StoredState()

    async def close(self) -> None:
        pass
