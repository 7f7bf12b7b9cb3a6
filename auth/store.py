"""
auth/store.py -- SQLAlchemy Core persistence layer for email challenges.

Pattern: Repository + Data Mapper (same as directory/store.py).
ChallengeStore is the repository; _row_to_challenge is the mapper.
TokenIssuer and TokenVerifier never touch SQL directly.

Invariants enforced here:
  latest(): ORDER BY sent_at DESC, rowid DESC LIMIT 1 is the whole superseding
      rule.
      A user's older challenges are never updated or deleted -- they simply
      stop being returned.

  mark_completed(): one UPDATE scoped by primary key AND completed = 0.
      The caller gets the affected row count back; anything other than
      exactly 1 means another request consumed the challenge first.

Security:
  All queries use bound parameters. No f-strings in SQL.

Schema ownership: storage/migrator.py creates email_challenges. This module
only declares the Table for query building.
"""

from __future__ import annotations

import logging

from sqlalchemy import Column, Integer, MetaData, String, Table, literal_column
from sqlalchemy.engine import Engine

from auth.models import EmailChallenge

logger = logging.getLogger("airlock.auth")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_challenges = Table(
    "email_challenges",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False),
    Column("token_hash", String(64), nullable=False),  # hex SHA-256
    Column("sent_at", Integer, nullable=False),  # epoch ms
    Column("completed", Integer, nullable=False, server_default="0"),
)

# Ties on sent_at fall back to insertion order; the last row inserted is newest.
_NEWEST_FIRST = (_challenges.c.sent_at.desc(), literal_column("rowid").desc())


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ChallengeStore:
    """Repository for EmailChallenge rows.

    Usage:
        store = ChallengeStore(engine)
        store.create(EmailChallenge(id=..., user_id=..., token_hash=..., sent_at=...))
        latest = store.latest(user_id)
        store.mark_completed(latest.id)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create(self, challenge: EmailChallenge) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _challenges.insert().values(
                    id=challenge.id,
                    user_id=challenge.user_id,
                    token_hash=challenge.token_hash,
                    sent_at=challenge.sent_at,
                    completed=1 if challenge.completed else 0,
                )
            )
            conn.commit()
        logger.debug("Stored challenge %s for user %s", challenge.id, challenge.user_id)

    def latest(self, user_id: str) -> EmailChallenge | None:
        """Return the user's active challenge (greatest sent_at), or None."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _challenges.select()
                .where(_challenges.c.user_id == user_id)
                .order_by(*_NEWEST_FIRST)
                .limit(1)
            ).fetchone()
        return _row_to_challenge(row) if row is not None else None

    def mark_completed(self, challenge_id: str) -> int:
        """Flip completed to 1 on one not-yet-completed row. Returns rows affected."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _challenges.update()
                .where((_challenges.c.id == challenge_id) & (_challenges.c.completed == 0))
                .values(completed=1)
            )
            conn.commit()
        return result.rowcount

    def list_for_user(self, user_id: str) -> list[EmailChallenge]:
        """All of a user's challenges, newest first. Used by the CLI and tests."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _challenges.select().where(_challenges.c.user_id == user_id).order_by(*_NEWEST_FIRST)
            ).fetchall()
        return [_row_to_challenge(r) for r in rows]


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_challenge(row) -> EmailChallenge:
    return EmailChallenge(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        sent_at=row.sent_at,
        completed=bool(row.completed),
    )
