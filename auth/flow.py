"""
auth/flow.py -- The email sign-in use case, shared by the JSON API and web UI.

EmailLoginFlow glues the directory, the challenge components, the credential
issuer and the mailer together. Route handlers call one method and either
get a result or an AirlockError subclass; they translate nothing themselves.

request_login(email, redirect):
  1. email must match EMAIL_PATTERN                     -> ValidationError
  2. the user must exist and be ACTIVE                  -> NotFound
  3. TokenIssuer.issue_challenge (debounce)             -> RateLimited
  4. build the link and hand it to the mailer           -> MailDeliveryError

complete_login(email, token):
  1. both parameters present, email well-formed         -> ValidationError
  2. the user must exist                                -> NotFound
  3. the user must be ACTIVE                            -> AccountSuspended
  4. TokenVerifier.verify                               -> token errors
  5. stamp last_login_at, mint the bearer credential

A suspended user is reported as NotFound on request (no mail is sent) and
as AccountSuspended (a generic 401 at the HTTP boundary) on verify.

If mail delivery fails after the challenge row was written, the row stays.
The user must wait out the debounce window before asking again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from auth.challenges import TokenIssuer, TokenVerifier
from auth.tokens import CredentialIssuer
from core.errors import AccountSuspended, NotFound, ValidationError
from core.models import is_valid_email
from directory.models import User
from directory.store import UserStore
from mail.sender import Mailer, build_verification_link

logger = logging.getLogger("airlock.auth")


@dataclass
class LoginResult:
    user: User
    access_token: str
    expires_in: int


class EmailLoginFlow:
    def __init__(
        self,
        users: UserStore,
        issuer: TokenIssuer,
        verifier: TokenVerifier,
        credentials: CredentialIssuer,
        mailer: Mailer,
        service_url: str,
        email_auth_path: str,
    ) -> None:
        self.users = users
        self.issuer = issuer
        self.verifier = verifier
        self.credentials = credentials
        self.mailer = mailer
        self.service_url = service_url
        self.email_auth_path = email_auth_path

    def request_login(self, email: str, redirect: str | None = None) -> User:
        """Issue a challenge for email and mail the link. Returns the user."""
        email = (email or "").strip()
        if not email or not is_valid_email(email):
            raise ValidationError("Invalid email format.")

        user = self.users.get_by_email(email)
        if user is None:
            raise NotFound("no user for requested email")
        if not user.is_active:
            raise NotFound(f"user {user.id} is {user.status.value}")

        secret = self.issuer.issue_challenge(user.id)
        link = build_verification_link(self.service_url, self.email_auth_path, secret, user.email, redirect)
        self.mailer.send(user.email, link)
        logger.info("Sign-in email dispatched for user %s", user.id)
        return user

    def complete_login(self, email: str, token: str) -> LoginResult:
        """Verify the emailed secret and exchange it for a bearer credential."""
        email = (email or "").strip()
        token = (token or "").strip()
        if not email or not token:
            raise ValidationError("Missing token or email parameter.")
        if not is_valid_email(email):
            raise ValidationError("Invalid email format.")

        user = self.users.get_by_email(email)
        if user is None:
            raise NotFound("no user for verified email")
        if not user.is_active:
            raise AccountSuspended(f"user {user.id} is {user.status.value}")

        self.verifier.verify(user.id, token)
        self.users.update_last_login(user.id)
        access_token = self.credentials.issue(user.id)
        logger.info("User %s signed in by email", user.id)
        return LoginResult(
            user=user,
            access_token=access_token,
            expires_in=self.credentials.lifetime_seconds,
        )
