"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in directory/models.py -- dataclasses own domain shape; stores and the
challenge components do the work.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class EmailChallenge:
    """One issued email sign-in secret and its metadata.

    Security design:
    - token_hash is hex SHA-256 of the secret's 32 raw bytes. The plaintext
      secret is mailed to the user and never stored; it cannot be recovered
      from this row.
    - sent_at (epoch ms) orders a user's challenges. Only the newest one is
      live: older rows are superseded by that ordering alone, whether or not
      they were ever completed. There is no "superseded" flag.
    - completed flips to True exactly once, when the secret is exchanged for
      a bearer credential.
    """

    id: str
    user_id: str
    token_hash: str
    sent_at: int
    completed: bool = False
