"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two credentials are recognised:
  1. Bearer credential -- the JWT returned by GET /api/auth/email/verify, sent
     as "Authorization: Bearer <token>" by API clients, or read from the
     "access_token" cookie set by the web UI verify page.
  2. Maintenance key   -- the X-API-Key header, compared against
     MAINTENANCE_API_KEY. Guards /api/maintenance only; it does not identify
     a user.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises Unauthorized (401) if unauthenticated.
require_maintenance_key() raises 503 when no key is configured and 401 on
a mismatch.

Layer rule: no imports from api/ or web/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import HTTPException, Request

from core.config import get_settings
from core.errors import Unauthorized
from directory.models import User

logger = logging.getLogger("airlock.auth")


def _extract_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return request.cookies.get("access_token") or None


def try_get_current_user(request: Request) -> User | None:
    """Authenticate the request by bearer credential.

    Returns the User on success, None on any failure. A suspended user's
    credential stops working immediately even though the JWT is still
    within its lifetime.
    """
    token = _extract_token(request)
    if not token:
        return None

    payload = request.app.state.credentials.decode(token)
    if payload is None:
        return None

    user = request.app.state.user_store.get_by_id(payload["sub"])
    if user is None or not user.is_active:
        return None
    return user


def get_current_user(request: Request) -> User:
    """Require a valid bearer credential.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise Unauthorized("missing or invalid bearer credential")
    return user


def require_maintenance_key(request: Request) -> None:
    """Guard for /api/maintenance routes.

    An empty MAINTENANCE_API_KEY disables the maintenance API entirely.
    """
    expected = get_settings().maintenance_api_key
    if not expected:
        raise HTTPException(
            status_code=503,
            detail={"code": "maintenance_disabled", "message": "Maintenance API is not configured."},
        )
    presented = request.headers.get("X-API-Key", "")
    if not hmac.compare_digest(presented.encode(), expected.encode()):
        logger.warning(
            "Rejected maintenance request from %s",
            request.client.host if request.client else "unknown",
        )
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Invalid maintenance API key."},
        )
