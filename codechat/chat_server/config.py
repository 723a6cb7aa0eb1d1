"""
Configuration management for the chat server.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set an explicit server id and secret
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep from_env() and validate() in sync
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

from .common.uuids import Uuid

logger = logging.getLogger(__name__)


class RelayBackend(Enum):
    """Supported relay clients."""

    MEMORY = "memory"
    HTTP = "http"


class PersistenceBackend(Enum):
    """Supported persistence sinks."""

    SQLITE = "sqlite"
    NONE = "none"


@dataclass(frozen=True)
class ServerIdentityConfig:
    """Identity of this server on the relay.

    Attributes:
        server_id: Dotted server id, root of every id this server mints
        secret: Shared secret for the relay
    """

    server_id: str = "1.1"
    secret: str = "dev-secret"

    @classmethod
    def from_env(cls) -> ServerIdentityConfig:
        """Load configuration from environment variables."""
        return cls(
            server_id=os.getenv("CHAT_SERVER_ID", "1.1"),
            secret=os.getenv("CHAT_SERVER_SECRET", "dev-secret"),
        )

    @property
    def uuid(self) -> Uuid:
        return Uuid.parse(self.server_id)

    @property
    def secret_bytes(self) -> bytes:
        return self.secret.encode("utf-8")


@dataclass(frozen=True)
class HttpConfig:
    """Client-facing HTTP server configuration."""

    host: str = "0.0.0.0"
    port: int = 2007

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "2007")),
        )


@dataclass(frozen=True)
class RelayConfig:
    """Relay client and polling configuration.

    Attributes:
        backend: Which relay client to use
        url: Relay service URL (if backend is HTTP)
        poll_interval_ms: Delay between poll cycles
        batch_size: Maximum bundles per poll
        timeout_s: Total timeout per relay request
    """

    backend: RelayBackend = RelayBackend.MEMORY
    url: str = "http://localhost:8090"
    poll_interval_ms: int = 5000
    batch_size: int = 32
    timeout_s: float = 5.0

    @classmethod
    def from_env(cls) -> RelayConfig:
        """Load configuration from environment variables."""
        backend_str = os.getenv("RELAY_BACKEND", "memory").lower()
        try:
            backend = RelayBackend(backend_str)
        except ValueError:
            raise ValueError(f"Invalid RELAY_BACKEND '{backend_str}'. Must be one of: memory, http")

        return cls(
            backend=backend,
            url=os.getenv("RELAY_URL", "http://localhost:8090"),
            poll_interval_ms=int(os.getenv("RELAY_POLL_INTERVAL_MS", "5000")),
            batch_size=int(os.getenv("RELAY_BATCH_SIZE", "32")),
            timeout_s=float(os.getenv("RELAY_TIMEOUT_S", "5.0")),
        )


@dataclass(frozen=True)
class RelayServiceConfig:
    """Standalone relay service configuration.

    Attributes:
        host: Bind address
        port: Bind port
        teams: "id:secret" pairs, comma-separated
        max_read: Upper bound on bundles per read
    """

    host: str = "0.0.0.0"
    port: int = 8090
    teams: str = ""
    max_read: int = 1000

    @classmethod
    def from_env(cls) -> RelayServiceConfig:
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("RELAY_HOST", "0.0.0.0"),
            port=int(os.getenv("RELAY_PORT", "8090")),
            teams=os.getenv("RELAY_TEAMS", ""),
            max_read=int(os.getenv("RELAY_MAX_READ", "1000")),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Persistence configuration.

    Attributes:
        backend: Which persistence sink to use
        data_dir: Directory for the SQLite database
        db_file: Database file name inside data_dir
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    backend: PersistenceBackend = PersistenceBackend.SQLITE
    data_dir: str = "/var/lib/codechat"
    db_file: str = "chat.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        backend_str = os.getenv("PERSISTENCE_BACKEND", "sqlite").lower()
        try:
            backend = PersistenceBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid PERSISTENCE_BACKEND '{backend_str}'. Must be one of: sqlite, none"
            )

        return cls(
            backend=backend,
            data_dir=os.getenv("DATA_DIR", "/var/lib/codechat"),
            db_file=os.getenv("DB_FILE", "chat.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class ControllerConfig:
    """Entity creation configuration.

    Attributes:
        max_id_attempts: Identifier candidates drawn before giving up
        admin_name: Name of the bootstrap administrator
        admin_password: Password of the bootstrap administrator
    """

    max_id_attempts: int = 64
    admin_name: str = "Admin"
    admin_password: str = "admin"

    @classmethod
    def from_env(cls) -> ControllerConfig:
        """Load configuration from environment variables."""
        return cls(
            max_id_attempts=int(os.getenv("ID_MAX_ATTEMPTS", "64")),
            admin_name=os.getenv("ADMIN_NAME", "Admin"),
            admin_password=os.getenv("ADMIN_PASSWORD", "admin"),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        identity: Server id and relay secret
        http: Client HTTP server configuration
        relay: Relay configuration
        storage: Persistence configuration
        controller: Entity creation configuration
        observability: Logging configuration
    """

    identity: ServerIdentityConfig = field(default_factory=ServerIdentityConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    controller: ControllerConfig = field(default_factory=ControllerConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            identity=ServerIdentityConfig.from_env(),
            http=HttpConfig.from_env(),
            relay=RelayConfig.from_env(),
            storage=StorageConfig.from_env(),
            controller=ControllerConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        server_id = self.identity.uuid
        if server_id.is_null:
            raise ValueError("CHAT_SERVER_ID must not be the NULL id")
        if not self.identity.secret:
            raise ValueError("CHAT_SERVER_SECRET is required")

        if self.relay.backend == RelayBackend.HTTP and not self.relay.url:
            raise ValueError("RELAY_URL is required when RELAY_BACKEND=http")
        if self.relay.poll_interval_ms <= 0:
            raise ValueError("RELAY_POLL_INTERVAL_MS must be positive")
        if self.relay.batch_size <= 0:
            raise ValueError("RELAY_BATCH_SIZE must be positive")

        if self.controller.max_id_attempts <= 0:
            raise ValueError("ID_MAX_ATTEMPTS must be positive")

        if self.storage.backend == PersistenceBackend.SQLITE and not os.path.exists(
            self.storage.data_dir
        ):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "server_id": self.identity.server_id,
                "http_bind": f"{self.http.host}:{self.http.port}",
                "relay_backend": self.relay.backend.value,
                "relay_url": self.relay.url if self.relay.backend == RelayBackend.HTTP else None,
                "relay_poll_interval_ms": self.relay.poll_interval_ms,
                "persistence_backend": self.storage.backend.value,
                "data_dir": self.storage.data_dir,
                "log_level": self.observability.log_level,
            },
        )
