"""
auth/challenges.py -- Issuing and verifying email sign-in challenges.

TokenIssuer and TokenVerifier are the two halves of the email loop. Both
work on the ChallengeStore and a Clock; neither knows about HTTP, mail, or
users beyond a user_id.

Issue rules:
  Debounce: if the user's newest challenge is younger than debounce_seconds,
      RateLimited is raised with the whole seconds left. Nothing is stored.
  Otherwise a fresh 256-bit secret is generated, its hash is stored with
      sent_at = now, and the hex plaintext is returned to the caller for
      mailing. That row supersedes every older one for the user.

Verify rules (checked in this order, first failure wins):
  1. No challenge on record                    -> NoChallenge
  2. Secret does not match the newest hash     -> InvalidToken
  3. Newest challenge older than expiry window -> TokenExpired
  4. Already completed                         -> AlreadyUsed
  5. Conditional completion updates no row     -> AlreadyUsed

Expiry is only evaluated after the hash matches, so a wrong secret never
reveals whether a live challenge exists.

Security:
  The plaintext secret is never logged. Challenge IDs are.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace

from auth.models import EmailChallenge
from auth.store import ChallengeStore
from auth.tokens import generate_email_secret, secret_matches
from core.errors import AlreadyUsed, InvalidToken, NoChallenge, RateLimited, TokenExpired
from core.models import Clock, now_ms

logger = logging.getLogger("airlock.auth")


class TokenIssuer:
    """Creates a new challenge for a user, subject to the debounce window.

    Usage:
        issuer = TokenIssuer(ChallengeStore(engine), debounce_seconds=180)
        secret = issuer.issue_challenge(user.id)   # hex, goes into the email link
    """

    def __init__(self, store: ChallengeStore, debounce_seconds: int, clock: Clock = now_ms) -> None:
        if debounce_seconds < 0:
            raise ValueError("debounce_seconds must be >= 0")
        self.store = store
        self.debounce_seconds = debounce_seconds
        self._clock = clock

    def issue_challenge(self, user_id: str) -> str:
        now = self._clock()
        latest = self.store.latest(user_id)
        if latest is not None:
            debounce_ms = self.debounce_seconds * 1000
            elapsed_ms = now - latest.sent_at
            if elapsed_ms < debounce_ms:
                retry_after = (debounce_ms - elapsed_ms) // 1000
                logger.info("Challenge for user %s debounced (retry in %ds)", user_id, retry_after)
                raise RateLimited(retry_after)

        secret, token_hash = generate_email_secret()
        challenge = EmailChallenge(
            id=str(uuid.uuid4()),
            user_id=user_id,
            token_hash=token_hash,
            sent_at=now,
            completed=False,
        )
        self.store.create(challenge)
        logger.info("Issued challenge %s for user %s", challenge.id, user_id)
        return secret


class TokenVerifier:
    """Checks a presented secret against the user's newest challenge and consumes it.

    Usage:
        verifier = TokenVerifier(ChallengeStore(engine), expiry_seconds=900)
        challenge = verifier.verify(user.id, token_from_link)
    """

    def __init__(self, store: ChallengeStore, expiry_seconds: int, clock: Clock = now_ms) -> None:
        if expiry_seconds < 0:
            raise ValueError("expiry_seconds must be >= 0")
        self.store = store
        self.expiry_seconds = expiry_seconds
        self._clock = clock

    def verify(self, user_id: str, presented: str) -> EmailChallenge:
        """Return the consumed challenge, or raise one of the token errors."""
        challenge = self.store.latest(user_id)
        if challenge is None:
            raise NoChallenge(f"no challenge on record for user {user_id}")

        if not secret_matches(presented, challenge.token_hash):
            raise InvalidToken(f"secret mismatch for challenge {challenge.id}")

        elapsed_ms = self._clock() - challenge.sent_at
        if elapsed_ms > self.expiry_seconds * 1000:
            raise TokenExpired(f"challenge {challenge.id} expired {elapsed_ms // 1000}s after sending")

        if challenge.completed:
            raise AlreadyUsed(f"challenge {challenge.id} already completed")

        # Two requests may both get this far with the same secret; the
        # conditional update lets exactly one of them through.
        if self.store.mark_completed(challenge.id) != 1:
            raise AlreadyUsed(f"challenge {challenge.id} completed concurrently")

        logger.info("Completed challenge %s for user %s", challenge.id, user_id)
        return replace(challenge, completed=True)
