"""
In-memory model of one chat server.

The Model owns every entity record: one EntityTable per entity type,
the conversation chain tails, conversation membership and the user
generation marker. It performs no validation beyond index constraints;
the Controller decides what may be admitted.

Invariants:
    - Users, conversations and messages share one identifier space
    - last_message(c) is always the most recently admitted message of c
    - The user generation advances on every user admission

How to change safely:
    - Only the Controller should call the add_* methods; restore() is for
      startup, before any Timeline task runs
    - Only touch the Model from inside Timeline tasks
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .common.entities import Conversation, Message, User
from .common.uuids import ID_MAX, LinearUuidGenerator, Uuid
from .store import EntityTable

logger = logging.getLogger(__name__)


class Model:
    """Entity tables plus per-conversation bookkeeping."""

    def __init__(self) -> None:
        self.users: EntityTable[User] = EntityTable(
            id_of=lambda u: u.id,
            time_of=lambda u: u.created_at,
            text_of=lambda u: u.name,
            name="user",
        )
        self.conversations: EntityTable[Conversation] = EntityTable(
            id_of=lambda c: c.id,
            time_of=lambda c: c.created_at,
            text_of=lambda c: c.title,
            name="conversation",
        )
        self.messages: EntityTable[Message] = EntityTable(
            id_of=lambda m: m.id,
            time_of=lambda m: m.created_at,
            text_of=lambda m: m.content,
            name="message",
        )

        self._user_generations = LinearUuidGenerator(None, 1, ID_MAX)
        self._user_generation = self._user_generations.make()
        self._heads: dict[Uuid, Uuid] = {}
        self._tails: dict[Uuid, Uuid] = {}
        self._members: dict[Uuid, list[Uuid]] = {}
        self.admin: User | None = None

    def restore(
        self,
        users: Iterable[User],
        conversations: Iterable[Conversation],
        memberships: Iterable[tuple[Uuid, Uuid]],
        messages: Iterable[Message],
    ) -> None:
        """Admit entities read back from persistence.

        Nothing is written back. Messages must be ordered head to tail per
        conversation, since each admitted message becomes its
        conversation's tail.

        Raises:
            StoreError: If an entity collides with one already admitted
        """
        user_count = conversation_count = message_count = 0
        for user in users:
            self.add_user(user)
            user_count += 1
        for conversation in conversations:
            self.add_conversation(conversation)
            conversation_count += 1
        for conversation_id, user_id in memberships:
            self.add_member(conversation_id, user_id)
        for message in messages:
            self.add_message(message)
            message_count += 1

        logger.info(
            "Restored model",
            extra={
                "users": user_count,
                "conversations": conversation_count,
                "messages": message_count,
            },
        )

    # Users

    def add_user(self, user: User) -> None:
        self.users.add(user)
        self._user_generation = self._user_generations.make()

    def get_user(self, user_id: Uuid) -> User | None:
        return self.users.get(user_id)

    def find_user_by_name(self, name: str) -> User | None:
        matches = self.users.by_text(name, name)
        return matches[0] if matches else None

    def is_name_taken(self, name: str) -> bool:
        return bool(self.users.by_text(name, name))

    @property
    def user_generation(self) -> Uuid:
        return self._user_generation

    # Conversations

    def add_conversation(self, conversation: Conversation) -> None:
        self.conversations.add(conversation)
        self._members[conversation.id] = [conversation.owner]

    def get_conversation(self, conversation_id: Uuid) -> Conversation | None:
        return self.conversations.get(conversation_id)

    def add_member(self, conversation_id: Uuid, user_id: Uuid) -> bool:
        """Add a member; returns False if already a member."""
        members = self._members.setdefault(conversation_id, [])
        if user_id in members:
            return False
        members.append(user_id)
        return True

    def is_member(self, conversation_id: Uuid, user_id: Uuid) -> bool:
        return user_id in self._members.get(conversation_id, [])

    def members(self, conversation_id: Uuid) -> list[Uuid]:
        return list(self._members.get(conversation_id, []))

    # Messages

    def add_message(self, message: Message) -> None:
        self.messages.add(message)
        self._heads.setdefault(message.conversation, message.id)
        self._tails[message.conversation] = message.id

    def update_message(self, message: Message) -> None:
        self.messages.update(message)

    def get_message(self, message_id: Uuid) -> Message | None:
        return self.messages.get(message_id)

    def last_message(self, conversation_id: Uuid) -> Message | None:
        tail = self._tails.get(conversation_id)
        return None if tail is None else self.messages.get(tail)

    def first_message(self, conversation_id: Uuid) -> Message | None:
        head = self._heads.get(conversation_id)
        return None if head is None else self.messages.get(head)

    def conversation_messages(self, conversation_id: Uuid) -> list[Message]:
        """Messages of one conversation in chain order."""
        chain: list[Message] = []
        current = self.first_message(conversation_id)
        while current is not None:
            chain.append(current)
            current = None if current.next.is_null else self.messages.get(current.next)
        return chain

    def is_id_in_use(self, entity_id: Uuid) -> bool:
        return (
            entity_id in self.users
            or entity_id in self.conversations
            or entity_id in self.messages
        )
