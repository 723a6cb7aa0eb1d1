"""
Standalone relay service.

Exposes an InMemoryRelay over HTTP for HttpRelay clients.

Usage:
    RELAY_TEAMS="1.1:secret-one,1.2:secret-two" python -m codechat.chat_server.relay.service

Endpoints:
    POST /v1/read    Read bundles after a cursor
    POST /v1/write   Store a bundle
    GET  /v1/health  Liveness and bundle count
"""

from __future__ import annotations

import asyncio
import binascii
import json
import logging
import signal
import sys
from collections.abc import Callable
from typing import Any

from aiohttp import web

from ..common.uuids import NULL_UUID, Uuid
from .base import Component, MalformedBundleError, RelayAuthError, decode_secret
from .memory import InMemoryRelay

logger = logging.getLogger(__name__)

RELAY_KEY = web.AppKey("relay", InMemoryRelay)


def create_relay_app(relay: InMemoryRelay) -> web.Application:
    """Create the relay HTTP application."""
    app = web.Application(middlewares=[error_middleware])
    app[RELAY_KEY] = relay
    app.router.add_post("/v1/read", handle_read)
    app.router.add_post("/v1/write", handle_write)
    app.router.add_get("/v1/health", handle_health)
    return app


@web.middleware
async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except RelayAuthError as e:
        return web.json_response({"error": str(e)}, status=401)
    except MalformedBundleError as e:
        return web.json_response({"error": str(e)}, status=400)
    except Exception as e:
        logger.error(f"Relay handler error: {e}", exc_info=True)
        return web.json_response({"error": str(e), "error_code": "INTERNAL"}, status=500)


async def _read_body(request: web.Request) -> tuple[dict[str, Any], Uuid, bytes]:
    try:
        body = await request.json()
    except json.JSONDecodeError:
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "Invalid JSON body"}),
            content_type="application/json",
        )
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "Body must be an object"}),
            content_type="application/json",
        )
    try:
        team = Uuid.from_json(body.get("team"))
        secret = decode_secret(str(body.get("secret", "")))
    except (ValueError, binascii.Error) as e:
        raise MalformedBundleError(f"Invalid credentials field: {e}") from e
    return body, team, secret


async def handle_read(request: web.Request) -> web.Response:
    """Handle POST /v1/read."""
    relay = request.app[RELAY_KEY]
    body, team, secret = await _read_body(request)

    try:
        after = NULL_UUID if body.get("after") is None else Uuid.from_json(body["after"])
        limit = int(body.get("limit", 32))
    except (TypeError, ValueError) as e:
        raise MalformedBundleError(f"Invalid read request: {e}") from e

    bundles = await relay.read(team, secret, after, limit)
    return web.json_response({"bundles": [b.to_dict() for b in bundles]})


async def handle_write(request: web.Request) -> web.Response:
    """Handle POST /v1/write."""
    relay = request.app[RELAY_KEY]
    body, team, secret = await _read_body(request)

    bundle = await relay.write(
        team,
        secret,
        Component.from_dict(body.get("user")),
        Component.from_dict(body.get("conversation")),
        Component.from_dict(body.get("message")),
    )
    return web.json_response({"bundle": bundle.to_dict()})


async def handle_health(request: web.Request) -> web.Response:
    relay = request.app[RELAY_KEY]
    return web.json_response({"healthy": True, "bundles": relay.get_bundle_count()})


def parse_teams(value: str) -> dict[Uuid, bytes]:
    """Parse "1.1:secret,1.2:other" into team credentials.

    Raises:
        ValueError: If an entry has no secret or an invalid id
    """
    teams: dict[Uuid, bytes] = {}
    for entry in filter(None, (part.strip() for part in value.split(","))):
        team, sep, secret = entry.partition(":")
        if not sep or not secret:
            raise ValueError(f"Invalid RELAY_TEAMS entry: {entry!r}")
        teams[Uuid.parse(team)] = secret.encode("utf-8")
    return teams


async def run_relay_service(relay: InMemoryRelay, host: str, port: int, stop: asyncio.Event) -> None:
    runner = web.AppRunner(create_relay_app(relay))
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info(f"Relay service running on http://{host}:{port}")
    try:
        await stop.wait()
    finally:
        await runner.cleanup()


def main() -> None:
    """Relay service entry point."""
    from ..config import ObservabilityConfig, RelayServiceConfig
    from ..main import setup_logging

    try:
        config = RelayServiceConfig.from_env()
        teams = parse_teams(config.teams)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(ObservabilityConfig.from_env())

    relay = InMemoryRelay(max_read=config.max_read)
    for team, secret in teams.items():
        relay.add_team(team, secret)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    stop = asyncio.Event()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop.set)

    try:
        loop.run_until_complete(run_relay_service(relay, config.host, config.port, stop))
    finally:
        loop.close()


if __name__ == "__main__":
    main()
