"""
Relay protocol and bundle types.

A relay is a shared store-and-forward service. Each chat server pushes a
bundle for every locally created message and periodically reads the
bundles written by everyone, strictly after its own cursor.

A bundle carries three snapshots (components): the message's author, its
conversation, and the message itself. Each component is an id, a piece
of text (name, title or body) and a timestamp.

Invariants:
    - Bundle ids increase in write order
    - read() returns bundles in non-decreasing id order
    - Servers authenticate with their id and a shared secret

How to change safely:
    - The JSON form of bundles is the wire format of HttpRelay; keep
      from_dict() tolerant of extra keys
    - New backends must implement the Relay protocol
"""

from __future__ import annotations

import base64
from abc import abstractmethod
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from ..common.uuids import Uuid


class RelayError(Exception):
    """Base exception for relay operations."""
    pass


class RelayConnectionError(RelayError):
    """The relay could not be reached."""
    pass


class RelayAuthError(RelayError):
    """Unknown team or wrong secret."""
    pass


class MalformedBundleError(RelayError):
    """Bundle data could not be decoded."""
    pass


@dataclass(frozen=True)
class Component:
    """Snapshot of one entity inside a bundle.

    Attributes:
        id: Entity identifier
        text: User name, conversation title or message body
        time: Entity creation time (Unix ms)
    """
    id: Uuid
    text: str
    time: int

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id.to_json(), "text": self.text, "time": self.time}

    @classmethod
    def from_dict(cls, data: Any) -> Component:
        """Decode a component.

        Raises:
            MalformedBundleError: If a field is missing or has the wrong type
        """
        try:
            text = data["text"]
            time_ms = data["time"]
            if not isinstance(text, str) or isinstance(time_ms, bool) or not isinstance(time_ms, int):
                raise TypeError("text must be str and time must be int")
            return cls(id=Uuid.from_json(data["id"]), text=text, time=time_ms)
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedBundleError(f"Invalid bundle component: {e}") from e


@dataclass(frozen=True)
class Bundle:
    """One relayed message event.

    Attributes:
        id: Relay-assigned bundle id
        team: Id of the server that wrote the bundle
        time: Time the relay accepted the bundle (Unix ms)
        user: Author snapshot
        conversation: Conversation snapshot
        message: Message snapshot
    """
    id: Uuid
    team: Uuid
    time: int
    user: Component
    conversation: Component
    message: Component

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id.to_json(),
            "team": self.team.to_json(),
            "time": self.time,
            "user": self.user.to_dict(),
            "conversation": self.conversation.to_dict(),
            "message": self.message.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> Bundle:
        """Decode a bundle.

        Raises:
            MalformedBundleError: If any field is missing or invalid
        """
        if not isinstance(data, dict):
            raise MalformedBundleError(f"Bundle must be an object, got {type(data).__name__}")
        try:
            return cls(
                id=Uuid.from_json(data["id"]),
                team=Uuid.from_json(data["team"]),
                time=int(data["time"]),
                user=Component.from_dict(data["user"]),
                conversation=Component.from_dict(data["conversation"]),
                message=Component.from_dict(data["message"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedBundleError(f"Invalid bundle: {e}") from e

    def __str__(self) -> str:
        return f"Bundle(id={self.id}, team={self.team})"


def encode_secret(secret: bytes) -> str:
    return base64.b64encode(secret).decode("ascii")


def decode_secret(value: str) -> bytes:
    return base64.b64decode(value.encode("ascii"), validate=True)


@runtime_checkable
class Relay(Protocol):
    """Protocol for relay clients.

    Example:
        >>> bundles = await relay.read(server_id, secret, last_seen, 32)
        >>> await relay.write(
        ...     server_id, secret,
        ...     relay.pack(user.id, user.name, user.created_at),
        ...     relay.pack(conv.id, conv.title, conv.created_at),
        ...     relay.pack(msg.id, msg.content, msg.created_at),
        ... )
    """

    @abstractmethod
    async def read(
        self,
        team_id: Uuid,
        secret: bytes,
        after: Uuid,
        limit: int,
    ) -> list[Bundle]:
        """Read up to limit bundles with ids strictly greater than after.

        Raises:
            RelayAuthError: If the credentials are rejected
            RelayConnectionError: If the relay is unreachable
            MalformedBundleError: If the response cannot be decoded
        """
        ...

    @abstractmethod
    async def write(
        self,
        team_id: Uuid,
        secret: bytes,
        user: Component,
        conversation: Component,
        message: Component,
    ) -> Bundle:
        """Store a bundle and return it with its relay-assigned id."""
        ...

    def pack(self, entity_id: Uuid, text: str, time: int) -> Component:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


def pack(entity_id: Uuid, text: str, time: int) -> Component:
    return Component(id=entity_id, text=text, time=time)
