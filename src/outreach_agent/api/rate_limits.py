"""Rate limiting configuration for API endpoints.

Provides rate limiting using slowapi to keep misbehaving callers from
flooding the call event pipeline or the agent callbacks.
"""

from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address


# Rate limiter instance - shared across the application
limiter = Limiter(key_func=get_remote_address)


class RateLimits:
    """Rate limit constants for different endpoint types."""

    # Agent callback reads (room lookups)
    READ = "60/minute"

    # Agent callback writes (status, transcript, results)
    WRITE = "30/minute"

    # Provider call events (several per call)
    WEBHOOK = "200/minute"

    # Health checks (allow frequent polling)
    HEALTH = "300/minute"
