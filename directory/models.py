"""
directory/models.py -- Domain dataclasses for the user directory.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; directory/store.py and the routes do the work.

All timestamps are integer epoch milliseconds.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class Service(str, Enum):
    PRUNK = "PRUNK"


class Permission(str, Enum):
    SUPER_USER = "SUPER_USER"
    USER = "USER"


@dataclass
class User:
    """An identity that may sign in by email.

    id is a UUID4 string assigned by the caller before insert. last_login_at
    is None until the first successful email verification.
    """

    id: str
    email: str
    status: UserStatus = UserStatus.ACTIVE
    created_at: int = 0
    updated_at: int = 0
    last_login_at: int | None = None

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE


@dataclass
class ServiceGrant:
    """Access to one downstream service at one permission level.

    expires_at None means the grant never lapses.
    """

    id: str
    user_id: str
    service: str
    permission: str
    expires_at: int | None = None
