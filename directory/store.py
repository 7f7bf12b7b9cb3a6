"""
directory/store.py -- SQLAlchemy Core persistence layer for the user directory.

Pattern: Repository + Data Mapper. UserStore is the repository;
_row_to_user / _row_to_grant are the mappers. Route and flow code never
touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Schema ownership: the tables below mirror storage/sql/schema-v*.sql for
query building only. UserStore never creates or alters tables --
storage/migrator.py does, before the store is constructed.

Layer rule: no imports from api/, web/, auth/, or mail/.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text
from sqlalchemy.engine import Engine

from core.models import Clock, now_ms
from directory.models import ServiceGrant, User, UserStatus

logger = logging.getLogger("airlock.directory")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", Text, nullable=False, unique=True),
    Column("status", String(16), nullable=False),
    Column("created_at", Integer, nullable=False),
    Column("updated_at", Integer, nullable=False),
    Column("last_login_at", Integer),  # added in schema v2
)

_user_services = Table(
    "user_services",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("service", Text, nullable=False),
    Column("permission", Text, nullable=False),
    Column("expires_at", Integer),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and ServiceGrant entities.

    Usage:
        store = UserStore(engine)
        user = store.create_user("alice@example.com")
        store.get_by_email("alice@example.com")
    """

    def __init__(self, engine: Engine, clock: Clock = now_ms) -> None:
        self.engine = engine
        self._clock = clock

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(
        self,
        email: str,
        status: UserStatus = UserStatus.ACTIVE,
        grants: Sequence[tuple[str, str, int | None]] = (),
    ) -> User:
        """Insert a new user, plus any (service, permission, expires_at) grants, and return it.

        The user and its grants commit together or not at all.
        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers map that to 409.
        """
        now = self._clock()
        user = User(id=str(uuid.uuid4()), email=email, status=status, created_at=now, updated_at=now)
        with self.engine.begin() as conn:
            conn.execute(
                _users.insert().values(
                    id=user.id,
                    email=user.email,
                    status=user.status.value,
                    created_at=user.created_at,
                    updated_at=user.updated_at,
                )
            )
            for service, permission, expires_at in grants:
                conn.execute(
                    _user_services.insert().values(
                        id=str(uuid.uuid4()),
                        user_id=user.id,
                        service=service,
                        permission=permission,
                        expires_at=expires_at,
                    )
                )
        logger.info("Created user %s with %d grant(s)", user.id, len(grants))
        return user

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email).limit(1)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.created_at.desc(), _users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_status(self, user_id: str, status: UserStatus) -> bool:
        """Set status and stamp updated_at. Returns False if user_id was not found."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(status=status.value, updated_at=self._clock())
            )
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: str) -> None:
        """Stamp last_login_at after a successful email verification."""
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login_at=self._clock()))
            conn.commit()

    def delete_user(self, user_id: str) -> bool:
        """Permanently delete a user. Returns True if deleted, False if not found.

        Service grants and email challenges go with it (ON DELETE CASCADE).
        The suspended-before-delete rule is the caller's responsibility.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        deleted = result.rowcount > 0
        if deleted:
            logger.info("Deleted user %s", user_id)
        return deleted

    # ------------------------------------------------------------------
    # Service grant queries
    # ------------------------------------------------------------------

    def create_service_grant(
        self,
        user_id: str,
        service: str,
        permission: str,
        expires_at: int | None = None,
    ) -> ServiceGrant:
        grant = ServiceGrant(
            id=str(uuid.uuid4()),
            user_id=user_id,
            service=service,
            permission=permission,
            expires_at=expires_at,
        )
        with self.engine.connect() as conn:
            conn.execute(
                _user_services.insert().values(
                    id=grant.id,
                    user_id=grant.user_id,
                    service=grant.service,
                    permission=grant.permission,
                    expires_at=grant.expires_at,
                )
            )
            conn.commit()
        return grant

    def list_service_grants(self, user_id: str) -> list[ServiceGrant]:
        """Return a user's grants ordered by service name."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _user_services.select()
                .where(_user_services.c.user_id == user_id)
                .order_by(_user_services.c.service, _user_services.c.id)
            ).fetchall()
        return [_row_to_grant(r) for r in rows]

    def get_service_grant(self, user_id: str, grant_id: str) -> ServiceGrant | None:
        """Look up a grant by ID, scoped to its owner so IDs cannot be probed across users."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _user_services.select().where(
                    (_user_services.c.id == grant_id) & (_user_services.c.user_id == user_id)
                )
            ).fetchone()
        return _row_to_grant(row) if row is not None else None

    def delete_service_grant(self, user_id: str, grant_id: str) -> bool:
        """Delete a grant. Both IDs must match. Returns False if nothing was deleted."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _user_services.delete().where(
                    (_user_services.c.id == grant_id) & (_user_services.c.user_id == user_id)
                )
            )
            conn.commit()
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        status=UserStatus(row.status),
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login_at=row.last_login_at,
    )


def _row_to_grant(row) -> ServiceGrant:
    return ServiceGrant(
        id=row.id,
        user_id=row.user_id,
        service=row.service,
        permission=row.permission,
        expires_at=row.expires_at,
    )
