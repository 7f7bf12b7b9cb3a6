"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/auth.py (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

This IP limit is a coarse flood guard. The per-user debounce on challenge
issuance is enforced separately by auth.challenges.TokenIssuer.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def email_request_limit() -> str:
    """Limit for POST /api/auth/email, read from EMAIL_REQUEST_RATE_LIMIT at request time."""
    return get_settings().email_request_rate_limit
