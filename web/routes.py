"""
web/routes.py -- Jinja2 template routes for the Airlock web UI.

These routes serve server-rendered HTML. They share app.state with the API
routes (same login flow, same stores) but return HTML instead of JSON, and
they translate AirlockError into an on-page message themselves.

Routes:
  GET  /                   -- 301 to /app, query string preserved
  GET  /app                -- email sign-in form
  POST /app/login          -- request a sign-in link
  POST /app/logout         -- clear the credential cookie
  GET  /auth/email/verify  -- target of the emailed link; sets the cookie

Redirects after verification [open-redirect guard]:
  The ?redirect= value carried through the email link is only honoured if it
  is a server-local path, or an absolute http(s) URL whose host is listed in
  ALLOWED_REDIRECT_HOSTS. Only in the second case is the credential appended
  as ?accesstoken=, so it never leaks to a host we do not trust.
"""

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from auth.dependencies import try_get_current_user
from auth.flow import EmailLoginFlow
from auth.tokens import set_auth_cookie
from core.config import get_settings
from core.errors import AirlockError, Internal, RateLimited

logger = logging.getLogger("airlock.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _is_local_path(url: str) -> bool:
    """Accept "/x" but not "//host" or "/\\host" (both leave the site)."""
    return url.startswith("/") and not url.startswith("//") and "\\" not in url


def _continue_target(redirect: Optional[str], allowed_hosts: list[str], access_token: str) -> str:
    """Pick where the "Continue" link on the verify page points."""
    if not redirect:
        return "/app"
    if any(ord(c) < 0x20 or ord(c) == 0x7F for c in redirect):
        # Browsers drop tab/CR/LF, so "/\t/host" would become "//host".
        logger.warning("Ignored redirect containing control characters")
        return "/app"
    if _is_local_path(redirect):
        return redirect

    parts = urlsplit(redirect)
    if parts.scheme in ("http", "https") and parts.hostname and parts.hostname.lower() in allowed_hosts:
        query = parse_qsl(parts.query, keep_blank_values=True)
        query.append(("accesstoken", access_token))
        return urlunsplit(parts._replace(query=urlencode(query)))

    logger.warning("Ignored redirect to untrusted host %r", parts.hostname)
    return "/app"


def _error_message(exc: AirlockError) -> str:
    if isinstance(exc, RateLimited):
        return f"A sign-in link was sent recently. Try again in {exc.retry_after_seconds} seconds."
    return exc.client_message()


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------


@router.get("/", include_in_schema=False)
def root(request: Request) -> RedirectResponse:
    target = "/app"
    if request.url.query:
        target += f"?{request.url.query}"
    return RedirectResponse(target, status_code=301)


@router.get("/app", response_class=HTMLResponse)
def login_form(request: Request, redirect: Optional[str] = None) -> HTMLResponse:
    """Render the email form, or the signed-in state if the cookie is valid."""
    return templates.TemplateResponse(
        request,
        "login.html",
        {"current_user": try_get_current_user(request), "redirect": redirect or ""},
    )


@router.post("/app/login", response_class=HTMLResponse)
def login_post(
    request: Request,
    email: str = Form(""),
    redirect: str = Form(""),
) -> HTMLResponse:
    """Request a sign-in link from the form."""
    flow: EmailLoginFlow = request.app.state.login_flow
    context = {"current_user": None, "redirect": redirect, "email": email}
    try:
        user = flow.request_login(email, redirect or None)
    except AirlockError as exc:
        if isinstance(exc, Internal):
            logger.error("Sign-in request failed: %s: %s", type(exc).__name__, exc)
        context["error_msg"] = _error_message(exc)
        return templates.TemplateResponse(request, "login.html", context, status_code=exc.status_code)

    context["sent_to"] = user.email
    return templates.TemplateResponse(request, "login.html", context)


@router.post("/app/logout")
def logout(request: Request) -> RedirectResponse:
    """Clear the credential cookie and return to the form."""
    resp = RedirectResponse("/app", status_code=302)
    resp.delete_cookie("access_token")
    return resp


@router.get("/auth/email/verify", response_class=HTMLResponse)
def verify_page(
    request: Request,
    token: Optional[str] = None,
    email: Optional[str] = None,
    redirect: Optional[str] = None,
) -> HTMLResponse:
    """Landing page for the emailed link."""
    flow: EmailLoginFlow = request.app.state.login_flow
    try:
        result = flow.complete_login(email or "", token or "")
    except AirlockError as exc:
        logger.info("Web verification failed: %s", type(exc).__name__)
        resp = templates.TemplateResponse(
            request,
            "verify.html",
            {"error_msg": _error_message(exc)},
            status_code=exc.status_code,
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    settings = get_settings()
    allowed = [h.lower() for h in settings.allowed_redirect_hosts]
    resp = templates.TemplateResponse(
        request,
        "verify.html",
        {
            "user": result.user,
            "continue_url": _continue_target(redirect, allowed, result.access_token),
        },
    )
    set_auth_cookie(resp, result.access_token, max_age=result.expires_in, secure=settings.secure_cookies)
    resp.headers["Cache-Control"] = "no-store"
    return resp
