"""
Relay clients for cross-server synchronization.

This module provides a pluggable relay interface supporting:
- HTTP relay service (production, via aiohttp)
- In-memory relay (tests, single-process development)

Invariants:
    - Bundles are returned in non-decreasing id order
    - read() returns only bundles strictly after the given cursor
    - Credentials are checked on every read and write

How to change safely:
    - New backends must implement the Relay protocol
    - Keep Bundle.to_dict()/from_dict() compatible with deployed relays
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import (
    Bundle,
    Component,
    MalformedBundleError,
    Relay,
    RelayAuthError,
    RelayConnectionError,
    RelayError,
    pack,
)
from .http import HttpRelay
from .memory import InMemoryRelay

if TYPE_CHECKING:
    from ..config import RelayConfig


def create_relay(config: "RelayConfig") -> Relay:
    """Build the relay client selected by configuration.

    Raises:
        ValueError: If the backend is not supported
    """
    from ..config import RelayBackend

    if config.backend == RelayBackend.HTTP:
        return HttpRelay(config.url, timeout_s=config.timeout_s)
    elif config.backend == RelayBackend.MEMORY:
        return InMemoryRelay()
    else:
        raise ValueError(f"Unsupported relay backend: {config.backend}")


__all__ = [
    "Relay",
    "Bundle",
    "Component",
    "RelayError",
    "RelayConnectionError",
    "RelayAuthError",
    "MalformedBundleError",
    "pack",
    "create_relay",
    "HttpRelay",
    "InMemoryRelay",
]
