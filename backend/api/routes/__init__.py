"""API routes package."""

from . import admin
from . import chat
from . import events

__all__ = ["admin", "chat", "events"]
