"""Rate limiting for the public widget endpoints.

Limits are keyed by client address and read from settings on every request.
Staff routes carry no limit.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from config import get_settings

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    enabled=get_settings().rate_limit_enabled,
)


def _per_window(count: int, seconds: int) -> str:
    return f"{count} per {seconds} seconds"


def chat_rate_limit() -> str:
    settings = get_settings()
    return _per_window(settings.rate_limit_chat_max, settings.rate_limit_chat_window_seconds)


def events_rate_limit() -> str:
    settings = get_settings()
    return _per_window(settings.rate_limit_events_max, settings.rate_limit_events_window_seconds)
