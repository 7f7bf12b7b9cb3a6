"""
API request and response models for Airlock REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in directory/models.py
and auth/models.py, which own the internal domain representation. Route
handlers map between the two.

Separation of concerns: domain dataclasses = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from directory.models import Permission, Service, ServiceGrant, User, UserStatus

# ---------------------------------------------------------------------------
# Email sign-in -- request models
# ---------------------------------------------------------------------------


class EmailAuthRequest(BaseModel):
    """Request body for POST /api/auth/email.

    The email format itself is checked by the login flow against
    core.models.EMAIL_PATTERN so the API, web UI and CLI agree on one rule.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=320)
    redirect: Optional[str] = Field(default=None, max_length=2048)


# ---------------------------------------------------------------------------
# Email sign-in -- response models
# ---------------------------------------------------------------------------


class EmailAuthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: str
    message: str = "Authentication email sent successfully."


class UserInfo(BaseModel):
    """Minimal identity block embedded in VerifyResponse."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    status: UserStatus

    @classmethod
    def from_user(cls, user: User) -> "UserInfo":
        return cls(id=user.id, email=user.email, status=user.status)


class VerifyResponse(BaseModel):
    """Response body for GET /api/auth/email/verify."""

    model_config = ConfigDict(frozen=True)

    message: str = "Email authentication successful."
    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    user: UserInfo


class MeResponse(BaseModel):
    """Response body for GET /api/auth/me."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    status: UserStatus
    last_login_at: Optional[int] = None


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class RateLimitedResponse(ErrorResponse):
    """429 envelope. retry_after_seconds mirrors the Retry-After header."""

    retry_after_seconds: int


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    service: str = "airlock"
    version: str


# ---------------------------------------------------------------------------
# Maintenance -- request models
# ---------------------------------------------------------------------------


class ServiceGrantCreate(BaseModel):
    """Request body for POST /api/maintenance/user/{id}/service.

    Accepts expiresAt (wire name) or expires_at. Epoch milliseconds; omitted
    means the grant never lapses.
    """

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    service: Service
    permission: Permission
    expires_at: Optional[int] = Field(default=None, alias="expiresAt", ge=0)


class UserCreate(BaseModel):
    """Request body for POST /api/maintenance/user.

    services defaults to a single PRUNK/USER grant when omitted or empty.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=320)
    status: UserStatus = UserStatus.ACTIVE
    services: list[ServiceGrantCreate] = Field(default_factory=list, max_length=20)


# ---------------------------------------------------------------------------
# Maintenance -- response models
# ---------------------------------------------------------------------------


class ServiceGrantResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    service: str
    permission: str
    expires_at: Optional[int] = None

    @classmethod
    def from_grant(cls, grant: ServiceGrant) -> "ServiceGrantResponse":
        return cls(
            id=grant.id,
            service=grant.service,
            permission=grant.permission,
            expires_at=grant.expires_at,
        )


class UserDetail(BaseModel):
    """A user with all of its service grants."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    status: UserStatus
    created_at: int
    updated_at: int
    last_login_at: Optional[int] = None
    services: list[ServiceGrantResponse] = Field(default_factory=list)

    @classmethod
    def from_user(cls, user: User, grants: list[ServiceGrant]) -> "UserDetail":
        """Factory Method -- the mapping lives beside the output model."""
        return cls(
            id=user.id,
            email=user.email,
            status=user.status,
            created_at=user.created_at,
            updated_at=user.updated_at,
            last_login_at=user.last_login_at,
            services=[ServiceGrantResponse.from_grant(g) for g in grants],
        )


class UserListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    users: list[UserDetail]
    count: int


class UserEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: UserDetail


class UserStatusResponse(BaseModel):
    """Response for suspend, activate and delete."""

    model_config = ConfigDict(frozen=True)

    message: str
    user_id: str
    status: Optional[UserStatus] = None


class ServiceListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    services: list[ServiceGrantResponse]
    count: int


class ServiceDeleteResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    user_id: str
    service_id: str
