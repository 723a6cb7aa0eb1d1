"""
HTTP front end for chat clients.

Clients POST tagged request objects (see api.protocol) and receive the
handler's response object. Each request is executed as a Timeline task,
never directly on the aiohttp handler, so client handling interleaves
with relay polling one task at a time.

Invariants:
    - Every request is handled inside the Timeline
    - Malformed requests get 400, unexpected failures 500

How to change safely:
    - Add request variants in api.protocol and api.handlers, not here
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from aiohttp import web

from ..scheduler import Timeline
from .handlers import RequestDispatcher
from .protocol import ProtocolError

logger = logging.getLogger(__name__)

DISPATCHER_KEY = web.AppKey("dispatcher", RequestDispatcher)
TIMELINE_KEY = web.AppKey("timeline", Timeline)
HEALTH_KEY = web.AppKey("health", Callable[[], dict[str, Any]])


def create_http_app(
    dispatcher: RequestDispatcher,
    timeline: Timeline,
    health: Callable[[], dict[str, Any]] | None = None,
) -> web.Application:
    """Create the client-facing HTTP application.

    Args:
        dispatcher: Request dispatcher
        timeline: Timeline that executes requests
        health: Optional callable returning extra health details
    """
    app = web.Application(middlewares=[error_middleware])
    app[DISPATCHER_KEY] = dispatcher
    app[TIMELINE_KEY] = timeline
    app[HEALTH_KEY] = health or (lambda: {})

    app.router.add_post("/v1/request", handle_request)
    app.router.add_get("/v1/health", handle_health)
    return app


@web.middleware
async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except ProtocolError as e:
        return web.json_response({"error": str(e), "error_code": "BAD_REQUEST"}, status=400)
    except Exception as e:
        logger.error(f"HTTP handler error: {e}", exc_info=True)
        return web.json_response({"error": str(e), "error_code": "INTERNAL"}, status=500)


async def handle_request(request: web.Request) -> web.Response:
    """Handle POST /v1/request - run one client request."""
    try:
        body = await request.json()
    except json.JSONDecodeError:
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "Invalid JSON body"}),
            content_type="application/json",
        )

    dispatcher = request.app[DISPATCHER_KEY]
    timeline = request.app[TIMELINE_KEY]

    result = await timeline.submit(lambda: dispatcher.handle(body))
    return web.json_response(result)


async def handle_health(request: web.Request) -> web.Response:
    """Handle GET /v1/health."""
    timeline = request.app[TIMELINE_KEY]
    details = request.app[HEALTH_KEY]()
    return web.json_response({"healthy": timeline.is_running, "timeline": timeline.stats, **details})


async def start_http_server(app: web.Application, host: str, port: int) -> web.AppRunner:
    """Start serving app; the caller owns the returned runner."""
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info(f"HTTP server running on http://{host}:{port}")
    return runner
