"""
Relay synchronizer.

Keeps this server loosely consistent with its peers:
- A recurring Timeline task reads bundles after the local cursor and
  merges them into the Model
- Every locally created message is pushed to the relay as a bundle

Merging a bundle applies its components in order (user, conversation,
message), because later components refer to earlier ones. A component
whose id already exists locally is skipped, which makes merging
idempotent: replayed or overlapping batches change nothing.

Invariants:
    - The cursor only moves forward, and only past merged bundles
    - A failed poll leaves the cursor where the last merge put it
    - The poll task always re-arms itself
    - Replicated entities keep their remote ids
    - Replicated users store RELAY_PASSWORD_HASH and cannot log in locally
    - A replicated conversation is owned by the author of the first
      bundle seen for it (the relay does not carry ownership)

How to change safely:
    - Keep merges going through the Controller so replicated messages are
      chained exactly like local ones
    - Test idempotency by merging the same batch twice
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..common.entities import RELAY_PASSWORD_HASH
from ..common.uuids import NULL_UUID, Uuid
from ..controller import Controller
from ..model import Model
from ..relay.base import Bundle, Relay
from ..scheduler import Timeline

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_MS = 5000
DEFAULT_BATCH_SIZE = 32


class SynchronizerError(Exception):
    """A bundle could not be merged."""
    pass


@dataclass
class MergeResult:
    """Outcome of merging one bundle.

    Attributes:
        bundle: The merged bundle
        created: Components created locally ("user", "conversation", "message")
        skipped: Components that already existed locally
    """
    bundle: Bundle
    created: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def duplicate(self) -> bool:
        return not self.created


@dataclass
class PollResult:
    """Outcome of one poll cycle.

    Attributes:
        fetched: Bundles returned by the relay
        merged: Results for bundles merged successfully, in order
        error: Error message if the cycle stopped early
    """
    fetched: int = 0
    merged: list[MergeResult] = field(default_factory=list)
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None


class RelaySynchronizer:
    """Pulls remote bundles into the Model and pushes local messages.

    Example:
        >>> sync = RelaySynchronizer(server_id, secret, relay, model, controller, timeline)
        >>> sync.start()  # schedules the recurring poll
        >>> sync.schedule_push(user.id, conv.id, msg.id)
    """

    def __init__(
        self,
        server_id: Uuid,
        secret: bytes,
        relay: Relay,
        model: Model,
        controller: Controller,
        timeline: Timeline,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        """Initialize the synchronizer.

        Args:
            server_id: This server's id, used as the relay team id
            secret: Shared secret for the relay
            relay: Relay client
            model: Local model (read to detect existing components)
            controller: Creation path for merged entities
            timeline: Scheduler that runs polls and pushes
            poll_interval_ms: Delay between poll cycles
            batch_size: Maximum bundles per poll
        """
        self.server_id = server_id
        self.secret = bytes(secret)
        self.relay = relay
        self.model = model
        self.controller = controller
        self.timeline = timeline
        self.poll_interval_ms = poll_interval_ms
        self.batch_size = batch_size

        self.last_seen: Uuid = NULL_UUID
        self._started = False
        self._poll_count = 0
        self._merged_count = 0
        self._duplicate_count = 0
        self._failed_polls = 0
        self._pushed_count = 0
        self._failed_pushes = 0

    def start(self) -> None:
        """Schedule the recurring poll task."""
        if self._started:
            logger.warning("Relay synchronizer already started")
            return
        self._started = True
        logger.info(
            "Starting relay synchronizer",
            extra={"interval_ms": self.poll_interval_ms, "batch_size": self.batch_size},
        )
        self.timeline.schedule_now(self._poll_task)

    async def _poll_task(self) -> None:
        try:
            await self.poll_once()
        finally:
            self.timeline.schedule_in(self.poll_interval_ms, self._poll_task)

    async def poll_once(self) -> PollResult:
        """Read one batch from the relay and merge it.

        Never raises for relay or merge failures; they are logged and
        reported in the result.
        """
        self._poll_count += 1
        result = PollResult()
        logger.debug("Reading update from relay", extra={"after": str(self.last_seen)})

        try:
            bundles = await self.relay.read(
                self.server_id, self.secret, self.last_seen, self.batch_size
            )
            result.fetched = len(bundles)

            for bundle in bundles:
                merge = await self.merge_bundle(bundle)
                result.merged.append(merge)
                if merge.duplicate:
                    self._duplicate_count += 1
                else:
                    self._merged_count += 1
                if self.last_seen < bundle.id:
                    self.last_seen = bundle.id

        except Exception as e:
            self._failed_polls += 1
            result.error = str(e)
            logger.error(
                f"Failed to read update from relay: {e}",
                exc_info=True,
                extra={"cursor": str(self.last_seen)},
            )

        return result

    async def merge_bundle(self, bundle: Bundle) -> MergeResult:
        """Merge one bundle into the local model.

        Raises:
            SynchronizerError: If a referenced entity cannot be resolved
            ControllerError, PersistenceError: If a creation failed
        """
        result = MergeResult(bundle=bundle)
        relay_user = bundle.user
        relay_conversation = bundle.conversation
        relay_message = bundle.message

        user = self.model.get_user(relay_user.id)
        if user is None:
            user = await self.controller.new_user(
                relay_user.text,
                None,
                user_id=relay_user.id,
                created_at=relay_user.time,
                enforce_unique_name=False,
                password_hash=RELAY_PASSWORD_HASH,
            )
            result.created.append("user")
        else:
            result.skipped.append("user")

        conversation = self.model.get_conversation(relay_conversation.id)
        if conversation is None:
            conversation = await self.controller.new_conversation(
                relay_conversation.text,
                user.id,
                conversation_id=relay_conversation.id,
                created_at=relay_conversation.time,
            )
            result.created.append("conversation")
        else:
            result.skipped.append("conversation")

        if self.model.get_message(relay_message.id) is None:
            await self.controller.new_message(
                user.id,
                conversation.id,
                relay_message.text,
                message_id=relay_message.id,
                created_at=relay_message.time,
            )
            result.created.append("message")
        else:
            result.skipped.append("message")

        if result.created:
            logger.info(
                "Merged relay bundle",
                extra={"bundle_id": str(bundle.id), "team": str(bundle.team), "created": result.created},
            )
        return result

    def schedule_push(self, user_id: Uuid, conversation_id: Uuid, message_id: Uuid) -> None:
        """Schedule an immediate push of a locally created message."""

        async def push() -> None:
            await self.push(user_id, conversation_id, message_id)

        self.timeline.schedule_now(push)

    async def push(self, user_id: Uuid, conversation_id: Uuid, message_id: Uuid) -> Bundle | None:
        """Pack (user, conversation, message) and write it to the relay.

        Returns:
            The stored bundle, or None if the push failed (logged)
        """
        user = self.model.get_user(user_id)
        conversation = self.model.get_conversation(conversation_id)
        message = self.model.get_message(message_id)

        try:
            if user is None or conversation is None or message is None:
                raise SynchronizerError(
                    f"Cannot push unknown entities "
                    f"(user={user_id}, conversation={conversation_id}, message={message_id})"
                )
            bundle = await self.relay.write(
                self.server_id,
                self.secret,
                self.relay.pack(user.id, user.name, user.created_at),
                self.relay.pack(conversation.id, conversation.title, conversation.created_at),
                self.relay.pack(message.id, message.content, message.created_at),
            )
        except Exception as e:
            self._failed_pushes += 1
            logger.error(
                f"Failed to write update to relay: {e}",
                exc_info=True,
                extra={"message_id": str(message_id)},
            )
            return None

        self._pushed_count += 1
        logger.debug("Pushed bundle to relay", extra={"bundle_id": str(bundle.id)})
        return bundle

    @property
    def stats(self) -> dict[str, Any]:
        """Get synchronizer statistics."""
        return {
            "started": self._started,
            "last_seen": str(self.last_seen),
            "poll_count": self._poll_count,
            "merged_count": self._merged_count,
            "duplicate_count": self._duplicate_count,
            "failed_polls": self._failed_polls,
            "pushed_count": self._pushed_count,
            "failed_pushes": self._failed_pushes,
        }
