"""
One handler per client request variant.

Handlers run as Timeline tasks, so each request sees and mutates the
Model without interference from relay polls or other requests.

Invariants:
    - A failed creation answers {"created": false, "error": ...} and
      leaves no partial state
    - A successful new_message schedules a relay push
    - Unknown request types answer {"type": "no_message"}
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ..controller import Controller, ControllerError
from ..persistence import PersistenceError
from ..store import StoreError
from ..sync import RelaySynchronizer
from ..view import View
from .protocol import (
    AddUserToConversationRequest,
    CheckExistentUsernameRequest,
    GetAllConversationsRequest,
    GetConversationsByIdRequest,
    GetConversationsByTimeRequest,
    GetConversationsByTitleRequest,
    GetMessagesByIdRequest,
    GetMessagesByRangeRequest,
    GetMessagesByTimeRequest,
    GetUserGenerationRequest,
    GetUsersByIdRequest,
    GetUsersExcludingRequest,
    LoginRequest,
    NewConversationRequest,
    NewMessageRequest,
    NewUserRequest,
    Request,
    parse_request,
)

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[dict[str, Any]]]

NO_MESSAGE = {"type": "no_message"}


def _not_created(response_type: str, error: Exception) -> dict[str, Any]:
    return {"type": response_type, "created": False, "error": str(error)}


class RequestDispatcher:
    """Routes decoded requests to their handlers.

    Example:
        >>> dispatcher = RequestDispatcher(controller, view, synchronizer)
        >>> await dispatcher.handle({"type": "new_user", "name": "a", "password": "b"})
        {'type': 'new_user_response', 'created': True, 'user': {...}}
    """

    def __init__(
        self,
        controller: Controller,
        view: View,
        synchronizer: RelaySynchronizer | None = None,
    ) -> None:
        self.controller = controller
        self.view = view
        self.synchronizer = synchronizer
        self._handlers: dict[type[Request], Handler] = {
            NewUserRequest: self._new_user,
            NewConversationRequest: self._new_conversation,
            NewMessageRequest: self._new_message,
            AddUserToConversationRequest: self._add_user_to_conversation,
            GetUsersByIdRequest: self._get_users_by_id,
            GetUsersExcludingRequest: self._get_users_excluding,
            GetAllConversationsRequest: self._get_all_conversations,
            GetConversationsByIdRequest: self._get_conversations_by_id,
            GetConversationsByTimeRequest: self._get_conversations_by_time,
            GetConversationsByTitleRequest: self._get_conversations_by_title,
            GetMessagesByIdRequest: self._get_messages_by_id,
            GetMessagesByTimeRequest: self._get_messages_by_time,
            GetMessagesByRangeRequest: self._get_messages_by_range,
            GetUserGenerationRequest: self._get_user_generation,
            CheckExistentUsernameRequest: self._check_existent_username,
            LoginRequest: self._login,
        }

    async def handle(self, data: Any) -> dict[str, Any]:
        """Decode and dispatch a raw request object.

        Raises:
            ProtocolError: If the request fields are invalid
        """
        request = parse_request(data)
        if request is None:
            logger.info("Unhandled request type", extra={"request_type": str(data.get("type"))})
            return dict(NO_MESSAGE)
        return await self.dispatch(request)

    async def dispatch(self, request: Request) -> dict[str, Any]:
        handler = self._handlers.get(type(request))
        if handler is None:
            return dict(NO_MESSAGE)
        return await handler(request)

    # Creation

    async def _new_user(self, request: NewUserRequest) -> dict[str, Any]:
        try:
            user = await self.controller.new_user(request.name, request.password)
        except (ControllerError, PersistenceError, StoreError) as e:
            logger.info(f"newUser fail: {e}", extra={"user_name": request.name})
            return _not_created("new_user_response", e)
        return {"type": "new_user_response", "created": True, "user": user.to_dict()}

    async def _new_conversation(self, request: NewConversationRequest) -> dict[str, Any]:
        try:
            conversation = await self.controller.new_conversation(request.title, request.owner)
        except (ControllerError, PersistenceError, StoreError) as e:
            logger.info(f"newConversation fail: {e}", extra={"owner": str(request.owner)})
            return _not_created("new_conversation_response", e)
        return {
            "type": "new_conversation_response",
            "created": True,
            "conversation": conversation.to_dict(),
        }

    async def _new_message(self, request: NewMessageRequest) -> dict[str, Any]:
        try:
            message = await self.controller.new_message(
                request.author, request.conversation, request.body
            )
        except (ControllerError, PersistenceError, StoreError) as e:
            logger.info(f"newMessage fail: {e}", extra={"conversation": str(request.conversation)})
            return _not_created("new_message_response", e)

        if self.synchronizer is not None:
            self.synchronizer.schedule_push(request.author, request.conversation, message.id)

        return {"type": "new_message_response", "created": True, "message": message.to_dict()}

    async def _add_user_to_conversation(
        self, request: AddUserToConversationRequest
    ) -> dict[str, Any]:
        try:
            added = await self.controller.add_user_to_conversation(
                request.issuer, request.user, request.conversation
            )
        except PersistenceError as e:
            logger.info(f"addUserToConversation fail: {e}")
            added = False
        return {"type": "add_user_to_conversation_response", "success": added}

    # Queries

    async def _get_users_by_id(self, request: GetUsersByIdRequest) -> dict[str, Any]:
        users = self.view.get_users(request.ids)
        return {"type": "get_users_by_id_response", "users": [u.to_dict() for u in users]}

    async def _get_users_excluding(self, request: GetUsersExcludingRequest) -> dict[str, Any]:
        users = self.view.get_users_excluding(request.ids)
        return {"type": "get_users_excluding_response", "users": [u.to_dict() for u in users]}

    async def _get_all_conversations(self, request: GetAllConversationsRequest) -> dict[str, Any]:
        summaries = self.view.get_all_conversations(request.user)
        return {
            "type": "get_all_conversations_response",
            "conversations": [s.to_dict() for s in summaries],
        }

    async def _get_conversations_by_id(
        self, request: GetConversationsByIdRequest
    ) -> dict[str, Any]:
        conversations = self.view.get_conversations(request.ids)
        return {
            "type": "get_conversations_by_id_response",
            "conversations": [c.to_dict() for c in conversations],
        }

    async def _get_conversations_by_time(
        self, request: GetConversationsByTimeRequest
    ) -> dict[str, Any]:
        conversations = self.view.get_conversations_by_time(request.start, request.end)
        return {
            "type": "get_conversations_by_time_response",
            "conversations": [c.to_dict() for c in conversations],
        }

    async def _get_conversations_by_title(
        self, request: GetConversationsByTitleRequest
    ) -> dict[str, Any]:
        conversations = self.view.get_conversations_by_title(request.filter)
        return {
            "type": "get_conversations_by_title_response",
            "conversations": [c.to_dict() for c in conversations],
        }

    async def _get_messages_by_id(self, request: GetMessagesByIdRequest) -> dict[str, Any]:
        messages = self.view.get_messages(request.ids)
        return {"type": "get_messages_by_id_response", "messages": [m.to_dict() for m in messages]}

    async def _get_messages_by_time(self, request: GetMessagesByTimeRequest) -> dict[str, Any]:
        messages = self.view.get_messages_by_time(request.conversation, request.start, request.end)
        return {
            "type": "get_messages_by_time_response",
            "messages": [m.to_dict() for m in messages],
        }

    async def _get_messages_by_range(self, request: GetMessagesByRangeRequest) -> dict[str, Any]:
        messages = self.view.get_messages_by_range(request.root, request.range)
        return {
            "type": "get_messages_by_range_response",
            "messages": [m.to_dict() for m in messages],
        }

    async def _get_user_generation(self, request: GetUserGenerationRequest) -> dict[str, Any]:
        return {
            "type": "get_user_generation_response",
            "generation": self.view.get_user_generation().to_json(),
        }

    async def _check_existent_username(
        self, request: CheckExistentUsernameRequest
    ) -> dict[str, Any]:
        return {
            "type": "check_existent_username_response",
            "exists": self.view.is_user_taken(request.name),
        }

    async def _login(self, request: LoginRequest) -> dict[str, Any]:
        user = self.view.authenticate(request.name, request.password)
        return {"type": "login_response", "user": None if user is None else user.to_dict()}
