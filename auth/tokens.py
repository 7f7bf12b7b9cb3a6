"""
auth/tokens.py -- Email secrets, their hashes, and bearer credentials.

Security design decisions:
  Email secrets: secrets.token_bytes(32) gives 256 bits of entropy. The user
       receives the bytes hex-encoded in the verification link; the store
       keeps only SHA-256 of the raw bytes. A fast deterministic hash is the
       right choice here (bcrypt's cost factor guards low-entropy passwords,
       not 256-bit random values), and determinism is what lets the verifier
       recompute and compare.

  Comparison: hmac.compare_digest so the response time does not depend on
       how many leading hash characters matched.

  Bearer credentials: python-jose with HS256. Claims are sub/userId (the user
       ID), iss, iat and exp = iat + 30 days. Credentials are not persisted;
       there is no server-side revocation, so one stays valid for its full
       lifetime. decode() returns None on any failure -- the route layer turns
       that into a 401.

  Signing key: passed in by the caller (api/main.py reads it from Settings).
       An empty key raises ConfigurationError at construction so a
       misconfigured process fails at startup, not on the first login.

  Cookie: set_auth_cookie() writes the same credential for the web UI as an
       httpOnly, samesite=lax cookie whose max_age equals the JWT lifetime.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import secrets

from jose import JWTError, jwt

from core.errors import ConfigurationError
from core.models import Clock, now_ms

logger = logging.getLogger("airlock.auth")

_ALGORITHM = "HS256"

CREDENTIAL_LIFETIME_SECONDS = 30 * 24 * 60 * 60  # 30 days

_HEX_RE = re.compile(r"(?:[0-9a-fA-F]{2})+")

# ---------------------------------------------------------------------------
# Email secrets
# ---------------------------------------------------------------------------


def generate_email_secret() -> tuple[str, str]:
    """Return (plaintext_hex, token_hash) for a new 256-bit email secret."""
    raw = secrets.token_bytes(32)
    return raw.hex(), hash_secret_bytes(raw)


def hash_secret_bytes(raw: bytes) -> str:
    """Hex SHA-256 of the secret's raw bytes (not of its hex text)."""
    return hashlib.sha256(raw).hexdigest()


def secret_matches(presented: str, stored_hash: str) -> bool:
    """Return True if the hex-encoded presented secret hashes to stored_hash.

    A presented value that is not valid hex is simply a non-match. The caller
    gets no signal distinguishing "malformed" from "wrong".
    """
    if not _HEX_RE.fullmatch(presented):
        return False
    return hmac.compare_digest(hash_secret_bytes(bytes.fromhex(presented)), stored_hash)


# ---------------------------------------------------------------------------
# Bearer credentials
# ---------------------------------------------------------------------------


class CredentialIssuer:
    """Mints and checks the JWT handed out after a successful verification.

    Usage:
        credentials = CredentialIssuer(secret_key=settings.jwt_secret, issuer=settings.jwt_issuer)
        token = credentials.issue(user.id)
        claims = credentials.decode(token)   # dict or None
    """

    lifetime_seconds = CREDENTIAL_LIFETIME_SECONDS

    def __init__(self, secret_key: str, issuer: str, clock: Clock = now_ms) -> None:
        if not secret_key:
            raise ConfigurationError("A JWT signing key is required to issue bearer credentials.")
        if not issuer:
            raise ConfigurationError("A JWT issuer name is required to issue bearer credentials.")
        self._secret_key = secret_key
        self.issuer = issuer
        self._clock = clock

    def issue(self, user_id: str) -> str:
        issued_at = self._clock() // 1000
        payload = {
            "sub": user_id,
            "userId": user_id,
            "iss": self.issuer,
            "iat": issued_at,
            "exp": issued_at + self.lifetime_seconds,
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def decode(self, token: str) -> dict | None:
        """Verify signature, issuer and expiry. Returns the claims or None."""
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                issuer=self.issuer,
                options={"verify_aud": False},
            )
        except JWTError:
            return None
        if not payload.get("sub"):
            return None
        return payload


def set_auth_cookie(response, token: str, max_age: int = CREDENTIAL_LIFETIME_SECONDS, secure: bool = False) -> None:
    """Write the bearer credential as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": cookie sent on same-site navigations and GET cross-site
        links, but not on cross-site POST -- CSRF mitigation for most cases.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the credential lifetime so both expire together.
    """
    response.set_cookie(
        "access_token",
        value=token,
        max_age=max_age,
        httponly=True,
        samesite="lax",
        secure=secure,
    )
