"""
Read-only queries over the Model.

All reads go straight to the entity tables, so an in-place update such
as a patched `next` link is visible to the very next query.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .common.entities import Conversation, ConversationSummary, Message, User, verify_password
from .common.uuids import Uuid
from .model import Model

logger = logging.getLogger(__name__)


class View:
    """Query side of the chat server."""

    def __init__(self, model: Model) -> None:
        self.model = model

    def get_users(self, ids: Iterable[Uuid]) -> list[User]:
        """Users with the given ids, in id order; unknown ids are ignored."""
        wanted = set(ids)
        return [u for u in self.model.users.by_id() if u.id in wanted]

    def get_users_excluding(self, ids: Iterable[Uuid]) -> list[User]:
        excluded = set(ids)
        return [u for u in self.model.users.by_id() if u.id not in excluded]

    def get_all_conversations(self, user_id: Uuid | None = None) -> list[ConversationSummary]:
        """Summaries of all conversations, or only those user_id belongs to."""
        return [
            c.summary
            for c in self.model.conversations.by_id()
            if user_id is None or self.model.is_member(c.id, user_id)
        ]

    def get_conversations(self, ids: Iterable[Uuid]) -> list[Conversation]:
        wanted = set(ids)
        return [c for c in self.model.conversations.by_id() if c.id in wanted]

    def get_conversations_by_time(self, start: int, end: int) -> list[Conversation]:
        return self.model.conversations.by_time(start, end)

    def get_conversations_by_title(self, filter_text: str) -> list[Conversation]:
        return self.model.conversations.filter_text(filter_text)

    def get_messages(self, ids: Iterable[Uuid]) -> list[Message]:
        """Messages with the given ids in creation-time order."""
        wanted = set(ids)
        return [m for m in self.model.messages.by_time() if m.id in wanted]

    def get_messages_by_time(self, conversation: Uuid, start: int, end: int) -> list[Message]:
        return [
            m for m in self.model.messages.by_time(start, end)
            if m.conversation == conversation
        ]

    def get_messages_by_range(self, root_message: Uuid, count: int) -> list[Message]:
        """The root message and up to abs(count) neighbours along its chain.

        A positive count walks forward through `next` links, a negative one
        walks backward through `previous` links. The result is always in
        chain (chronological) order and always starts or ends with the
        root. Zero returns only the root; an unknown root returns [].
        """
        root = self.model.get_message(root_message)
        if root is None:
            return []

        found = [root]
        current = root
        for _ in range(abs(count)):
            link = current.next if count > 0 else current.previous
            if link.is_null:
                break
            current = self.model.get_message(link)
            if current is None:
                logger.warning("Broken message chain", extra={"missing": str(link)})
                break
            found.append(current)

        if count < 0:
            found.reverse()
        return found

    def get_user_generation(self) -> Uuid:
        return self.model.user_generation

    def find_user(self, user_id: Uuid) -> User | None:
        return self.model.get_user(user_id)

    def find_conversation(self, conversation_id: Uuid) -> Conversation | None:
        return self.model.get_conversation(conversation_id)

    def find_message(self, message_id: Uuid) -> Message | None:
        return self.model.get_message(message_id)

    def is_user_taken(self, name: str) -> bool:
        return self.model.is_name_taken(name)

    def authenticate(self, name: str, password: str) -> User | None:
        """The user with this name if the password matches."""
        user = self.model.find_user_by_name(name)
        if user is None or not verify_password(password, user.password_hash):
            return None
        return user
