"""
Cooperative scheduling for the chat server.

The Timeline is constructed once at server startup and handed to every
component that needs to schedule work.
"""

from .timeline import Task, Timeline

__all__ = ["Timeline", "Task"]
