"""
Controller: the single path through which entities are created.

Both client requests and relay merges create users, conversations and
messages through these methods, so a replicated entity is
indistinguishable from a local one once admitted.

Every creation follows the same order:
    1. validate references and identifier availability
    2. write through to the persistence sink
    3. admit into the Model

Invariants:
    - A failed creation leaves the Model untouched
    - Locally minted ids are rooted at this server's id and free in all
      three entity tables
    - Message chain links are patched exactly once per message creation

How to change safely:
    - Keep persistence before admission, otherwise a sink failure would
      leave in-memory state the database never saw
    - Only call from inside Timeline tasks
"""

from __future__ import annotations

import logging
from dataclasses import replace

from .common.entities import Conversation, Message, User, hash_password, now_ms
from .common.uuids import NULL_UUID, RandomUuidGenerator, Uuid
from .model import Model
from .persistence import NullPersistence, PersistenceSink

logger = logging.getLogger(__name__)

DEFAULT_MAX_ID_ATTEMPTS = 64


class ControllerError(Exception):
    """Base exception for entity creation."""
    pass


class InvalidRequestError(ControllerError):
    """Request arguments are unusable (e.g. an empty user name)."""
    pass


class IdInUseError(ControllerError):
    """The requested identifier already names an entity."""
    pass


class NameTakenError(ControllerError):
    """Another user already has this name."""
    pass


class UnknownReferenceError(ControllerError):
    """A referenced user or conversation does not exist."""
    pass


class IdentifierSpaceExhaustedError(ControllerError):
    """No free identifier was found within the retry budget."""
    pass


class Controller:
    """Creates entities and keeps message chains linked.

    Example:
        >>> controller = Controller(server_id, model)
        >>> user = await controller.new_user("alice", "secret")
        >>> conv = await controller.new_conversation("general", user.id)
        >>> msg = await controller.new_message(user.id, conv.id, "hi")
    """

    def __init__(
        self,
        server_id: Uuid,
        model: Model,
        persistence: PersistenceSink | None = None,
        max_id_attempts: int = DEFAULT_MAX_ID_ATTEMPTS,
        seed: int | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            server_id: This server's identifier, root of every minted id
            model: Model to admit entities into
            persistence: Write-through sink (no durability if omitted)
            max_id_attempts: Candidates to draw before giving up
            seed: PRNG seed for the id generator (wall clock if omitted)
        """
        self.server_id = server_id
        self.model = model
        self.persistence = persistence or NullPersistence()
        self.max_id_attempts = max_id_attempts
        self._generator = RandomUuidGenerator(server_id, seed)

    def create_id(self) -> Uuid:
        """Draw an identifier not used by any user, conversation or message.

        Raises:
            IdentifierSpaceExhaustedError: If every attempt collided
        """
        for attempt in range(self.max_id_attempts):
            candidate = self._generator.make()
            if not self.model.is_id_in_use(candidate):
                return candidate
            logger.debug(
                "Identifier collision, drawing again",
                extra={"candidate": str(candidate), "attempt": attempt},
            )
        raise IdentifierSpaceExhaustedError(
            f"No free identifier after {self.max_id_attempts} attempts"
        )

    def _claim_id(self, requested: Uuid | None) -> Uuid:
        if requested is None:
            return self.create_id()
        if requested.is_null:
            raise InvalidRequestError("Entity id must not be NULL")
        if self.model.is_id_in_use(requested):
            raise IdInUseError(f"Id already in use: {requested}")
        return requested

    async def bootstrap(self, admin_name: str = "Admin", admin_password: str = "admin") -> User:
        """Make sure the administrator account exists."""
        admin = self.model.find_user_by_name(admin_name)
        if admin is None:
            admin = await self.new_user(admin_name, admin_password)
        self.model.admin = admin
        return admin

    async def new_user(
        self,
        name: str,
        password: str | None,
        *,
        user_id: Uuid | None = None,
        created_at: int | None = None,
        enforce_unique_name: bool = True,
        password_hash: str | None = None,
    ) -> User:
        """Create a user.

        Args:
            name: Display name
            password: Plaintext credential, stored hashed
            user_id: Explicit id (replicated users keep their remote id)
            created_at: Explicit creation time (Unix ms)
            enforce_unique_name: Reject names already taken case-insensitively
            password_hash: Stored credential to use as is instead of hashing
                password (relay users get RELAY_PASSWORD_HASH)

        Raises:
            InvalidRequestError: If the name is empty or no credential was given
            NameTakenError: If the name is taken and uniqueness is enforced
            IdInUseError: If user_id is already used
            PersistenceError: If the sink failed; nothing was admitted
        """
        if not name or not name.strip():
            raise InvalidRequestError("User name must not be empty")
        if enforce_unique_name and self.model.is_name_taken(name):
            raise NameTakenError(f"User name already taken: {name}")
        if password_hash is None:
            if password is None:
                raise InvalidRequestError("User password must be given")
            password_hash = hash_password(password)

        user = User(
            id=self._claim_id(user_id),
            name=name,
            created_at=now_ms() if created_at is None else created_at,
            password_hash=password_hash,
        )

        await self.persistence.write_user(user)
        self.model.add_user(user)

        logger.info(
            "newUser success",
            extra={"user_id": str(user.id), "user_name": user.name, "created_at": user.created_at},
        )
        return user

    async def new_conversation(
        self,
        title: str,
        owner: Uuid,
        *,
        conversation_id: Uuid | None = None,
        created_at: int | None = None,
    ) -> Conversation:
        """Create a conversation owned by an existing user.

        Raises:
            UnknownReferenceError: If the owner does not exist
            IdInUseError: If conversation_id is already used
            PersistenceError: If the sink failed; nothing was admitted
        """
        if self.model.get_user(owner) is None:
            raise UnknownReferenceError(f"Unknown owner: {owner}")

        conversation = Conversation(
            id=self._claim_id(conversation_id),
            owner=owner,
            created_at=now_ms() if created_at is None else created_at,
            title=title,
        )

        await self.persistence.write_conversation(conversation)
        self.model.add_conversation(conversation)

        logger.info(
            "Conversation added",
            extra={"conversation_id": str(conversation.id), "owner": str(owner)},
        )
        return conversation

    async def new_message(
        self,
        author: Uuid,
        conversation: Uuid,
        body: str,
        *,
        message_id: Uuid | None = None,
        created_at: int | None = None,
    ) -> Message:
        """Create a message at the end of a conversation's chain.

        The previous tail (if any) gets its `next` link set to the new
        message; the new message points back at it.

        Raises:
            UnknownReferenceError: If the author or conversation does not exist
            IdInUseError: If message_id is already used
            PersistenceError: If the sink failed; nothing was admitted
        """
        if self.model.get_user(author) is None:
            raise UnknownReferenceError(f"Unknown author: {author}")
        if self.model.get_conversation(conversation) is None:
            raise UnknownReferenceError(f"Unknown conversation: {conversation}")

        new_id = self._claim_id(message_id)
        previous = self.model.last_message(conversation)

        message = Message(
            id=new_id,
            next=NULL_UUID,
            previous=NULL_UUID if previous is None else previous.id,
            created_at=now_ms() if created_at is None else created_at,
            author=author,
            conversation=conversation,
            content=body,
        )
        patched = None if previous is None else replace(previous, next=new_id)

        await self.persistence.write_message(message, patched)
        if patched is not None:
            self.model.update_message(patched)
        self.model.add_message(message)

        logger.info(
            "Message added",
            extra={
                "message_id": str(message.id),
                "conversation_id": str(conversation),
                "previous": str(message.previous),
            },
        )
        return message

    async def add_user_to_conversation(
        self,
        issuer: Uuid,
        user: Uuid,
        conversation: Uuid,
    ) -> bool:
        """Add a user to a conversation on behalf of an existing member.

        Returns:
            True if the user is a member afterwards, False if the issuer
            is not a member or any reference is unknown
        """
        if (
            self.model.get_conversation(conversation) is None
            or self.model.get_user(user) is None
            or not self.model.is_member(conversation, issuer)
        ):
            logger.info(
                "addUserToConversation rejected",
                extra={"issuer": str(issuer), "user": str(user), "conversation": str(conversation)},
            )
            return False

        if self.model.is_member(conversation, user):
            return True

        await self.persistence.write_membership(conversation, user)
        self.model.add_member(conversation, user)
        return True
