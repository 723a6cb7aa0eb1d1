"""
API module for the chat server.

This module provides the client interface:
- Tagged request variants (protocol)
- One handler per variant (handlers)
- HTTP transport via aiohttp (http_server)

Invariants:
    - Requests execute as Timeline tasks
    - Failed creations report "not created" instead of partial results
"""

from .handlers import RequestDispatcher
from .http_server import create_http_app, start_http_server
from .protocol import ProtocolError, Request, parse_request

__all__ = [
    "RequestDispatcher",
    "create_http_app",
    "start_http_server",
    "ProtocolError",
    "Request",
    "parse_request",
]
