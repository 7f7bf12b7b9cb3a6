"""
api/routes/auth.py -- Email sign-in REST endpoints.

Routes:
  POST /api/auth/email          -- issue a challenge and mail the link
  GET  /api/auth/email/verify   -- exchange the emailed secret for a bearer credential
  GET  /api/auth/me             -- current user info (requires bearer credential)

All three delegate to app.state.login_flow / app.state.user_store and raise
AirlockError subclasses; api/main.py renders every failure in the standard
error envelope.

Security:
  POST /auth/email is IP rate-limited by slowapi (EMAIL_REQUEST_RATE_LIMIT)
  on top of the per-user debounce enforced by TokenIssuer.
  Verify responses carry Cache-Control: no-store -- they contain a credential.
  Token failures of every kind reach the client as one generic 401.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import email_request_limit, limiter
from api.models import EmailAuthRequest, EmailAuthResponse, MeResponse, UserInfo, VerifyResponse
from auth.dependencies import get_current_user
from auth.flow import EmailLoginFlow
from directory.models import User

# Auth policy:
# - POST /api/auth/email:         public -- this is how a session starts
# - GET  /api/auth/email/verify:  public -- possession of the emailed secret is the proof
# - GET  /api/auth/me:            requires bearer credential (get_current_user)
router = APIRouter()


@limiter.limit(email_request_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/email", response_model=EmailAuthResponse)
def request_email_auth(request: Request, body: EmailAuthRequest) -> EmailAuthResponse:
    """Send a sign-in link to a registered, active user."""
    flow: EmailLoginFlow = request.app.state.login_flow
    user = flow.request_login(body.email, body.redirect or None)
    return EmailAuthResponse(email=user.email)


@router.get("/auth/email/verify", response_model=VerifyResponse)
def verify_email_auth(
    request: Request,
    token: Optional[str] = None,
    email: Optional[str] = None,
) -> JSONResponse:
    """Verify the emailed secret and return a 30-day bearer credential.

    Missing parameters are reported by the flow as ValidationError (400), so
    they share the envelope with every other failure.
    """
    flow: EmailLoginFlow = request.app.state.login_flow
    result = flow.complete_login(email or "", token or "")
    resp = JSONResponse(
        status_code=200,
        content=VerifyResponse(
            access_token=result.access_token,
            expires_in=result.expires_in,
            user=UserInfo.from_user(result.user),
        ).model_dump(mode="json"),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the bearer of the credential."""
    return MeResponse(
        id=current_user.id,
        email=current_user.email,
        status=current_user.status,
        last_login_at=current_user.last_login_at,
    )
