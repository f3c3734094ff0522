"""Rate limiting of the inbound HTTP surface."""

from __future__ import annotations

import os

from fastapi import Request
from slowapi import Limiter


def get_client_ip(request: Request) -> str:
    """Extract a best-effort client IP for rate limiting.

    Prefer ``X-Forwarded-For`` (first hop) if present, otherwise use the
    socket peer address.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def events_rate_limit() -> str:
    return os.getenv("RELAY_EVENTS_RATE_LIMIT", "600/minute")


limiter = Limiter(key_func=get_client_ip)
