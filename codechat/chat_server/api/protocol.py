"""
Client request variants.

Every client request is a JSON object with a "type" tag. Each tag maps
to one request dataclass here and one handler in api.handlers.

Example:
    {"type": "new_message", "author": "1.7.42", "conversation": "1.7.99", "body": "hi"}
"""

from __future__ import annotations

from dataclasses import MISSING, dataclass, fields
from typing import Any, ClassVar

from ..common.uuids import Uuid


class ProtocolError(Exception):
    """Request could not be decoded."""
    pass


@dataclass(frozen=True)
class Request:
    TYPE: ClassVar[str] = ""


@dataclass(frozen=True)
class NewUserRequest(Request):
    TYPE: ClassVar[str] = "new_user"
    name: str
    password: str


@dataclass(frozen=True)
class NewConversationRequest(Request):
    TYPE: ClassVar[str] = "new_conversation"
    title: str
    owner: Uuid


@dataclass(frozen=True)
class NewMessageRequest(Request):
    TYPE: ClassVar[str] = "new_message"
    author: Uuid
    conversation: Uuid
    body: str


@dataclass(frozen=True)
class AddUserToConversationRequest(Request):
    TYPE: ClassVar[str] = "add_user_to_conversation"
    issuer: Uuid
    user: Uuid
    conversation: Uuid


@dataclass(frozen=True)
class GetUsersByIdRequest(Request):
    TYPE: ClassVar[str] = "get_users_by_id"
    ids: tuple[Uuid, ...]


@dataclass(frozen=True)
class GetUsersExcludingRequest(Request):
    TYPE: ClassVar[str] = "get_users_excluding"
    ids: tuple[Uuid, ...]


@dataclass(frozen=True)
class GetAllConversationsRequest(Request):
    TYPE: ClassVar[str] = "get_all_conversations"
    user: Uuid | None = None


@dataclass(frozen=True)
class GetConversationsByIdRequest(Request):
    TYPE: ClassVar[str] = "get_conversations_by_id"
    ids: tuple[Uuid, ...]


@dataclass(frozen=True)
class GetConversationsByTimeRequest(Request):
    TYPE: ClassVar[str] = "get_conversations_by_time"
    start: int
    end: int


@dataclass(frozen=True)
class GetConversationsByTitleRequest(Request):
    TYPE: ClassVar[str] = "get_conversations_by_title"
    filter: str


@dataclass(frozen=True)
class GetMessagesByIdRequest(Request):
    TYPE: ClassVar[str] = "get_messages_by_id"
    ids: tuple[Uuid, ...]


@dataclass(frozen=True)
class GetMessagesByTimeRequest(Request):
    TYPE: ClassVar[str] = "get_messages_by_time"
    conversation: Uuid
    start: int
    end: int


@dataclass(frozen=True)
class GetMessagesByRangeRequest(Request):
    TYPE: ClassVar[str] = "get_messages_by_range"
    root: Uuid
    range: int


@dataclass(frozen=True)
class GetUserGenerationRequest(Request):
    TYPE: ClassVar[str] = "get_user_generation"


@dataclass(frozen=True)
class CheckExistentUsernameRequest(Request):
    TYPE: ClassVar[str] = "check_existent_username"
    name: str


@dataclass(frozen=True)
class LoginRequest(Request):
    TYPE: ClassVar[str] = "login"
    name: str
    password: str


REQUEST_TYPES: dict[str, type[Request]] = {
    cls.TYPE: cls
    for cls in (
        NewUserRequest,
        NewConversationRequest,
        NewMessageRequest,
        AddUserToConversationRequest,
        GetUsersByIdRequest,
        GetUsersExcludingRequest,
        GetAllConversationsRequest,
        GetConversationsByIdRequest,
        GetConversationsByTimeRequest,
        GetConversationsByTitleRequest,
        GetMessagesByIdRequest,
        GetMessagesByTimeRequest,
        GetMessagesByRangeRequest,
        GetUserGenerationRequest,
        CheckExistentUsernameRequest,
        LoginRequest,
    )
}


def _decode(annotation: str, value: Any, name: str) -> Any:
    if annotation == "Uuid":
        return Uuid.from_json(value)
    if annotation == "Uuid | None":
        return None if value is None else Uuid.from_json(value)
    if annotation == "tuple[Uuid, ...]":
        if not isinstance(value, list):
            raise ProtocolError(f"Field {name!r} must be a list of ids")
        return tuple(Uuid.from_json(item) for item in value)
    if annotation == "int":
        if isinstance(value, bool) or not isinstance(value, int):
            raise ProtocolError(f"Field {name!r} must be an integer")
        return value
    if annotation == "str":
        if not isinstance(value, str):
            raise ProtocolError(f"Field {name!r} must be a string")
        return value
    raise ProtocolError(f"Unsupported field type {annotation} for {name!r}")


def parse_request(data: Any) -> Request | None:
    """Decode a request object.

    Returns:
        The request, or None if the type tag is unknown

    Raises:
        ProtocolError: If the tag is known but the fields are invalid
    """
    if not isinstance(data, dict):
        raise ProtocolError("Request must be a JSON object")

    tag = data.get("type")
    cls = REQUEST_TYPES.get(tag) if isinstance(tag, str) else None
    if cls is None:
        return None

    kwargs: dict[str, Any] = {}
    for f in fields(cls):
        if f.name not in data:
            if f.default is not MISSING:
                continue
            raise ProtocolError(f"Missing field {f.name!r} for {cls.TYPE}")
        try:
            kwargs[f.name] = _decode(str(f.type), data[f.name], f.name)
        except ValueError as e:
            raise ProtocolError(f"Invalid field {f.name!r}: {e}") from e
    return cls(**kwargs)
