"""
Chat server - Main entry point.

This module starts the chat server with all components:
- Timeline (the single task runner)
- Model, Controller and View over the in-memory entity tables
- Persistence sink (SQLite write-through)
- Relay synchronizer (recurring poll + push on new messages)
- HTTP API for clients

Usage:
    python -m codechat.chat_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Persisted state is restored into the Model before bootstrap
    - The Timeline is running before any task touches the Model
    - The bootstrap admin exists before the first client request
    - Graceful shutdown stops the Timeline before closing collaborators

How to change safely:
    - Construct new components here and pass the Timeline explicitly
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Any

import json_log_formatter
from aiohttp import web

from .api import RequestDispatcher, create_http_app, start_http_server
from .config import ObservabilityConfig, RelayBackend, ServerConfig
from .controller import Controller
from .model import Model
from .persistence import PersistenceSink, create_persistence
from .relay import InMemoryRelay, Relay, create_relay
from .scheduler import Timeline
from .sync import RelaySynchronizer
from .view import View

logger = logging.getLogger(__name__)


def setup_logging(config: ObservabilityConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Observability configuration
    """
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    if config.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class Server:
    """Chat server orchestrator.

    Attributes:
        config: Server configuration
        timeline: Task runner shared by all components
        model: In-memory entity tables
        controller: Entity creation path
        view: Read queries
        relay: Relay client
        synchronizer: Relay poll/push logic

    Example:
        >>> server = Server()
        >>> await server.start()  # runs until request_shutdown()
    """

    def __init__(
        self,
        config: ServerConfig | None = None,
        relay: Relay | None = None,
        persistence: PersistenceSink | None = None,
    ) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
            relay: Relay client to use instead of the configured one
            persistence: Sink to use instead of the configured one
        """
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        self.timeline: Timeline | None = None
        self.model: Model | None = None
        self.controller: Controller | None = None
        self.view: View | None = None
        self.relay: Relay | None = relay
        self.persistence: PersistenceSink | None = persistence
        self.synchronizer: RelaySynchronizer | None = None
        self.dispatcher: RequestDispatcher | None = None
        self.http_runner: web.AppRunner | None = None

        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        """Start the server and block until shutdown is requested."""
        await self.setup()
        logger.info("Chat server started successfully")
        await self._shutdown_event.wait()

    async def setup(self) -> None:
        """Build and start every component without blocking."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting chat server")
        self.config.log_config()
        identity = self.config.identity
        server_id = identity.uuid

        try:
            if self.persistence is None:
                self.persistence = create_persistence(self.config.storage)
            await self.persistence.initialize()

            if self.relay is None:
                self.relay = create_relay(self.config.relay)
                if self.config.relay.backend == RelayBackend.MEMORY and isinstance(
                    self.relay, InMemoryRelay
                ):
                    self.relay.add_team(server_id, identity.secret_bytes)

            self.timeline = Timeline()
            self.model = Model()
            state = await self.persistence.load()
            self.model.restore(
                state.users, state.conversations, state.memberships, state.messages
            )
            self.controller = Controller(
                server_id,
                self.model,
                self.persistence,
                max_id_attempts=self.config.controller.max_id_attempts,
            )
            self.view = View(self.model)
            self.synchronizer = RelaySynchronizer(
                server_id=server_id,
                secret=identity.secret_bytes,
                relay=self.relay,
                model=self.model,
                controller=self.controller,
                timeline=self.timeline,
                poll_interval_ms=self.config.relay.poll_interval_ms,
                batch_size=self.config.relay.batch_size,
            )
            self.dispatcher = RequestDispatcher(self.controller, self.view, self.synchronizer)

            self._tasks.append(asyncio.create_task(self.timeline.start()))

            controller = self.controller
            await self.timeline.submit(lambda: controller.bootstrap(
                self.config.controller.admin_name,
                self.config.controller.admin_password,
            ))

            self.synchronizer.start()

            app = create_http_app(self.dispatcher, self.timeline, health=self.health)
            self.http_runner = await start_http_server(
                app, self.config.http.host, self.config.http.port
            )

            self._running = True

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            self._running = True
            await self.stop()
            raise

    def health(self) -> dict[str, Any]:
        return {
            "server_id": self.config.identity.server_id,
            "sync": self.synchronizer.stats if self.synchronizer else None,
        }

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running:
            return

        logger.info("Stopping chat server")

        if self.http_runner:
            await self.http_runner.cleanup()

        if self.timeline:
            await self.timeline.stop()

        for task in self._tasks:
            task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        if self.relay:
            await self.relay.close()

        if self.persistence:
            await self.persistence.close()

        self._running = False
        logger.info("Chat server stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.observability)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    server = Server(config)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
