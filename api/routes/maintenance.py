"""
api/routes/maintenance.py -- Operator endpoints for the user directory.

Routes:
  GET    /api/maintenance/status                            -- liveness of this router
  GET    /api/maintenance/user                              -- list users with their services
  GET    /api/maintenance/user/{user_id}                    -- one user with services
  POST   /api/maintenance/user                              -- create user (+ grants)
  PUT    /api/maintenance/user/{user_id}/suspend            -- status -> SUSPENDED
  PUT    /api/maintenance/user/{user_id}/activate           -- status -> ACTIVE
  DELETE /api/maintenance/user/{user_id}                    -- delete (must be SUSPENDED)
  GET    /api/maintenance/user/{user_id}/service            -- list grants
  POST   /api/maintenance/user/{user_id}/service            -- add grant
  DELETE /api/maintenance/user/{user_id}/service/{grant_id} -- remove grant

Security:
  Every route depends on require_maintenance_key (X-API-Key). The router is
  mounted even when MAINTENANCE_API_KEY is empty; the dependency then answers
  503 so operators get a clear signal instead of a 404.
  Delete requires the user to be SUSPENDED first -- a two-step guard against
  removing an active account by mistake.
  IDOR guard: grant lookups and deletes are scoped by user_id in the store.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.models import (
    ErrorDetail,
    ServiceDeleteResponse,
    ServiceGrantCreate,
    ServiceGrantResponse,
    ServiceListResponse,
    UserCreate,
    UserDetail,
    UserEnvelope,
    UserListResponse,
    UserStatusResponse,
)
from auth.dependencies import require_maintenance_key
from core.errors import NotFound, ValidationError
from core.models import is_valid_email
from directory.models import Permission, Service, User, UserStatus
from directory.store import UserStore

logger = logging.getLogger("airlock.api")

router = APIRouter(dependencies=[Depends(require_maintenance_key)])


def _get_user_or_404(user_store: UserStore, user_id: str) -> User:
    user = user_store.get_by_id(user_id)
    if user is None:
        raise NotFound(f"maintenance lookup for unknown user {user_id}")
    return user


def _detail(user_store: UserStore, user: User) -> UserDetail:
    return UserDetail.from_user(user, user_store.list_service_grants(user.id))


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@router.get("/maintenance/status")
async def status() -> dict:
    return {"message": "Maintenance endpoint", "status": "operational"}


@router.get("/maintenance/user", response_model=UserListResponse)
def list_users(request: Request) -> UserListResponse:
    user_store: UserStore = request.app.state.user_store
    users = [_detail(user_store, u) for u in user_store.list_users()]
    return UserListResponse(users=users, count=len(users))


@router.get("/maintenance/user/{user_id}", response_model=UserEnvelope)
def get_user(request: Request, user_id: str) -> UserEnvelope:
    user_store: UserStore = request.app.state.user_store
    user = _get_user_or_404(user_store, user_id)
    return UserEnvelope(user=_detail(user_store, user))


@router.post("/maintenance/user", response_model=UserEnvelope, status_code=201)
def create_user(request: Request, body: UserCreate) -> UserEnvelope:
    """Create a user. With no services in the body, grants PRUNK/USER."""
    user_store: UserStore = request.app.state.user_store
    if not is_valid_email(body.email):
        raise ValidationError("Invalid email format.")

    grants = body.services or [ServiceGrantCreate(service=Service.PRUNK, permission=Permission.USER)]
    try:
        user = user_store.create_user(
            body.email,
            body.status,
            [(g.service.value, g.permission.value, g.expires_at) for g in grants],
        )
    except IntegrityError:
        raise HTTPException(
            status_code=409,
            detail={"code": "duplicate_email", "message": "A user with this email already exists."},
        )

    logger.info("Maintenance: created user %s with %d grant(s)", user.id, len(grants))
    return UserEnvelope(user=_detail(user_store, user))


def _set_status(request: Request, user_id: str, status: UserStatus, verb: str) -> UserStatusResponse:
    user_store: UserStore = request.app.state.user_store
    _get_user_or_404(user_store, user_id)
    if not user_store.update_status(user_id, status):
        raise NotFound(f"user {user_id} vanished during status update")
    logger.info("Maintenance: %s user %s", verb, user_id)
    return UserStatusResponse(message=f"User {verb} successfully.", user_id=user_id, status=status)


@router.put("/maintenance/user/{user_id}/suspend", response_model=UserStatusResponse)
def suspend_user(request: Request, user_id: str) -> UserStatusResponse:
    return _set_status(request, user_id, UserStatus.SUSPENDED, "suspended")


@router.put("/maintenance/user/{user_id}/activate", response_model=UserStatusResponse)
def activate_user(request: Request, user_id: str) -> UserStatusResponse:
    return _set_status(request, user_id, UserStatus.ACTIVE, "activated")


@router.delete("/maintenance/user/{user_id}", response_model=UserStatusResponse)
def delete_user(request: Request, user_id: str):
    """Delete a user, its grants and its challenges. The user must be SUSPENDED."""
    user_store: UserStore = request.app.state.user_store
    user = _get_user_or_404(user_store, user_id)
    if user.status != UserStatus.SUSPENDED:
        return JSONResponse(
            status_code=400,
            content={
                "error": ErrorDetail(
                    code="user_not_suspended",
                    message="User must be suspended before deletion.",
                ).model_dump(),
                "current_status": user.status.value,
            },
        )
    user_store.delete_user(user_id)
    logger.info("Maintenance: deleted user %s", user_id)
    return UserStatusResponse(message="User deleted successfully.", user_id=user_id)


# ---------------------------------------------------------------------------
# Service grants
# ---------------------------------------------------------------------------


@router.get("/maintenance/user/{user_id}/service", response_model=ServiceListResponse)
def list_services(request: Request, user_id: str) -> ServiceListResponse:
    user_store: UserStore = request.app.state.user_store
    _get_user_or_404(user_store, user_id)
    services = [ServiceGrantResponse.from_grant(g) for g in user_store.list_service_grants(user_id)]
    return ServiceListResponse(user_id=user_id, services=services, count=len(services))


@router.post("/maintenance/user/{user_id}/service", response_model=ServiceGrantResponse, status_code=201)
def add_service(request: Request, user_id: str, body: ServiceGrantCreate) -> ServiceGrantResponse:
    user_store: UserStore = request.app.state.user_store
    _get_user_or_404(user_store, user_id)
    grant = user_store.create_service_grant(user_id, body.service.value, body.permission.value, body.expires_at)
    logger.info("Maintenance: granted %s/%s to user %s", grant.service, grant.permission, user_id)
    return ServiceGrantResponse.from_grant(grant)


@router.delete("/maintenance/user/{user_id}/service/{grant_id}", response_model=ServiceDeleteResponse)
def remove_service(request: Request, user_id: str, grant_id: str) -> ServiceDeleteResponse:
    user_store: UserStore = request.app.state.user_store
    _get_user_or_404(user_store, user_id)
    if not user_store.delete_service_grant(user_id, grant_id):
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "Service grant not found for this user."},
        )
    logger.info("Maintenance: removed grant %s from user %s", grant_id, user_id)
    return ServiceDeleteResponse(message="Service removed successfully.", user_id=user_id, service_id=grant_id)
