"""
In-memory relay.

Used as:
- The backing store of the standalone relay service (relay.service)
- A shared relay between several servers in one process (tests, local
  development)

Invariants:
    - All data is lost on process exit
    - Bundle ids come from one sequential generator, so ids increase in
      write order and read() can stop at the first id past the cursor
"""

from __future__ import annotations

import asyncio
import hmac
import logging
from bisect import bisect_right

from ..common.entities import now_ms
from ..common.uuids import ID_MAX, LinearUuidGenerator, Uuid
from .base import Bundle, Component, RelayAuthError, pack

logger = logging.getLogger(__name__)


class InMemoryRelay:
    """Store-and-forward relay held in memory.

    Example:
        >>> relay = InMemoryRelay()
        >>> relay.add_team(server_id, b"secret")
        >>> bundle = await relay.write(server_id, b"secret", user, conv, msg)
        >>> await relay.read(other_id, other_secret, NULL_UUID, 32)
        [bundle]
    """

    def __init__(self, max_read: int = 1000) -> None:
        """Initialize an empty relay.

        Args:
            max_read: Upper bound on bundles returned by one read
        """
        self.max_read = max_read
        self._teams: dict[Uuid, bytes] = {}
        self._bundles: list[Bundle] = []
        self._ids = LinearUuidGenerator(None, 1, ID_MAX)
        self._lock = asyncio.Lock()

    def add_team(self, team_id: Uuid, secret: bytes) -> None:
        """Register a server allowed to read and write."""
        self._teams[team_id] = bytes(secret)
        logger.info("Relay team registered", extra={"team": str(team_id)})

    def _authenticate(self, team_id: Uuid, secret: bytes) -> None:
        expected = self._teams.get(team_id)
        if expected is None or not hmac.compare_digest(expected, bytes(secret)):
            raise RelayAuthError(f"Relay rejected credentials for team {team_id}")

    def pack(self, entity_id: Uuid, text: str, time: int) -> Component:
        return pack(entity_id, text, time)

    async def read(
        self,
        team_id: Uuid,
        secret: bytes,
        after: Uuid,
        limit: int,
    ) -> list[Bundle]:
        self._authenticate(team_id, secret)
        limit = max(0, min(limit, self.max_read))

        async with self._lock:
            keys = [bundle.id.sort_key() for bundle in self._bundles]
            start = bisect_right(keys, after.sort_key())
            found = self._bundles[start:start + limit]

        logger.debug(
            "Relay read",
            extra={"team": str(team_id), "after": str(after), "count": len(found)},
        )
        return found

    async def write(
        self,
        team_id: Uuid,
        secret: bytes,
        user: Component,
        conversation: Component,
        message: Component,
    ) -> Bundle:
        self._authenticate(team_id, secret)

        async with self._lock:
            bundle = Bundle(
                id=self._ids.make(),
                team=team_id,
                time=now_ms(),
                user=user,
                conversation=conversation,
                message=message,
            )
            self._bundles.append(bundle)

        logger.debug(
            "Relay write",
            extra={"team": str(team_id), "bundle_id": str(bundle.id)},
        )
        return bundle

    async def close(self) -> None:
        pass

    # Testing helpers

    def get_all_bundles(self) -> list[Bundle]:
        return list(self._bundles)

    def get_bundle_count(self) -> int:
        return len(self._bundles)
