"""
core/errors.py -- Error taxonomy shared by every Airlock layer.

Each class carries the HTTP status, a machine-readable code, and the message
that is safe to show a client. The api/ exception handler turns any
AirlockError into the standard ErrorResponse envelope using those three
attributes, so route handlers just raise.

Token failures (NoChallenge, InvalidToken, TokenExpired, AccountSuspended)
all subclass Unauthorized and share its public message. They stay distinct
classes so logs and tests can tell them apart, while a client only ever sees
one generic 401 -- no user-enumeration or token-oracle signal.

The constructor message (str(exc)) is for logs. It is shown to the client
only for ValidationError, whose message is client-fixable by definition.

Layer rule: core/ is the kernel. No imports from other Airlock packages.
"""

from __future__ import annotations


class AirlockError(Exception):
    """Base error for Airlock."""

    status_code: int = 500
    code: str = "internal_error"
    public_message: str = "An unexpected error occurred."

    def client_message(self) -> str:
        return self.public_message


class ValidationError(AirlockError):
    """Malformed client input."""

    status_code = 400
    code = "validation_error"
    public_message = "Request validation failed."

    def client_message(self) -> str:
        return str(self) or self.public_message


class NotFound(AirlockError):
    """Unknown user or related record."""

    status_code = 404
    code = "not_found"
    public_message = "User not found."


class RateLimited(AirlockError):
    """A challenge was issued too recently for this user."""

    status_code = 429
    code = "rate_limited"
    public_message = "Email authentication request too recent."

    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__(f"retry after {retry_after_seconds}s")
        self.retry_after_seconds = retry_after_seconds


class Unauthorized(AirlockError):
    """Generic authentication failure."""

    status_code = 401
    code = "unauthorized"
    public_message = "Invalid or expired authentication token."


class NoChallenge(Unauthorized):
    """The user has never been issued a challenge."""


class InvalidToken(Unauthorized):
    """The presented secret is malformed or does not match the active challenge."""


class TokenExpired(Unauthorized):
    """The secret matched but the challenge is older than the expiry window."""


class AccountSuspended(Unauthorized):
    """The user exists but is not allowed to authenticate."""


class AlreadyUsed(AirlockError):
    """The active challenge was already exchanged for a credential."""

    status_code = 400
    code = "token_already_used"
    public_message = "Authentication token has already been used."


class Internal(AirlockError):
    """Storage, signing, or delivery failure."""


class MailDeliveryError(Internal):
    """The mail collaborator rejected or failed to send a message."""

    code = "mail_delivery_failed"
    public_message = "Failed to send authentication email."


class MigrationError(Internal):
    """The store could not be brought to the expected schema version."""


class ConfigurationError(Internal):
    """Required configuration is missing or invalid."""
