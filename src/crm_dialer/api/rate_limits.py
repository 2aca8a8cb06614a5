"""Rate limiting for API endpoints (slowapi)."""

from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address


# Shared across the application; attached to app.state in create_app()
limiter = Limiter(key_func=get_remote_address)


class RateLimits:
    """Rate limit strings per endpoint type."""

    READ = "60/minute"
    WRITE = "30/minute"

    # Token issue, admin changes, transcription
    SENSITIVE = "10/minute"

    # Each call costs money
    OUTBOUND_CALL = "5/minute"

    # Starting, pausing or aborting a batch
    BATCH = "10/minute"

    # Vapi posts every status change for every call
    WEBHOOK = "600/minute"

    REPORT = "20/minute"
    HEALTH = "300/minute"
