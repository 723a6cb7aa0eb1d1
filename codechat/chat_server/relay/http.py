"""
HTTP relay client.

Talks to a relay service (see relay.service) over JSON:

    POST /v1/read   {"team", "secret", "after", "limit"} -> {"bundles": [...]}
    POST /v1/write  {"team", "secret", "user", "conversation", "message"}
                    -> {"bundle": {...}}

Secrets travel base64-encoded. Timeouts are enforced here, by the client
session, so a slow relay only ever costs one bounded poll.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from ..common.uuids import Uuid
from .base import (
    Bundle,
    Component,
    MalformedBundleError,
    RelayAuthError,
    RelayConnectionError,
    RelayError,
    encode_secret,
    pack,
)

logger = logging.getLogger(__name__)


class HttpRelay:
    """Relay client backed by aiohttp.

    Example:
        >>> relay = HttpRelay("http://relay:8090", timeout_s=5.0)
        >>> bundles = await relay.read(server_id, secret, NULL_UUID, 32)
        >>> await relay.close()
    """

    def __init__(
        self,
        base_url: str,
        timeout_s: float = 5.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Relay service root URL
            timeout_s: Total timeout per request
            session: Existing session to use (not closed by close())
        """
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_s),
            )
        return self._session

    async def _post(self, path: str, body: dict[str, Any]) -> Any:
        url = f"{self.base_url}{path}"
        try:
            async with self._get_session().post(url, json=body) as response:
                if response.status in (401, 403):
                    raise RelayAuthError(f"Relay rejected credentials ({response.status})")
                if response.status != 200:
                    text = await response.text()
                    raise RelayError(f"Relay returned {response.status}: {text[:200]}")
                try:
                    return await response.json()
                except (aiohttp.ContentTypeError, ValueError) as e:
                    raise MalformedBundleError(f"Relay response is not JSON: {e}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RelayConnectionError(f"Relay unreachable at {url}: {e}") from e

    def pack(self, entity_id: Uuid, text: str, time: int) -> Component:
        return pack(entity_id, text, time)

    async def read(
        self,
        team_id: Uuid,
        secret: bytes,
        after: Uuid,
        limit: int,
    ) -> list[Bundle]:
        data = await self._post("/v1/read", {
            "team": team_id.to_json(),
            "secret": encode_secret(secret),
            "after": None if after.is_null else after.to_json(),
            "limit": limit,
        })
        if not isinstance(data, dict) or not isinstance(data.get("bundles"), list):
            raise MalformedBundleError("Relay read response has no bundle list")
        return [Bundle.from_dict(item) for item in data["bundles"]]

    async def write(
        self,
        team_id: Uuid,
        secret: bytes,
        user: Component,
        conversation: Component,
        message: Component,
    ) -> Bundle:
        data = await self._post("/v1/write", {
            "team": team_id.to_json(),
            "secret": encode_secret(secret),
            "user": user.to_dict(),
            "conversation": conversation.to_dict(),
            "message": message.to_dict(),
        })
        if not isinstance(data, dict):
            raise MalformedBundleError("Relay write response is not an object")
        return Bundle.from_dict(data.get("bundle"))

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None
