"""
core/models.py -- Domain constants and primitives shared across layers.

Timestamps in Airlock are integer epoch milliseconds everywhere (storage,
domain dataclasses, JSON). Components that compare times take a Clock
callable instead of calling time.time() themselves, so tests can pin "now".
"""

import re
import time
from typing import Callable

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# Canonical email format. A domain rule -- not an API contract.
# All layers (api/, web/, CLI) that need to validate an email import from here.
EMAIL_PATTERN = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"

_EMAIL_RE = re.compile(EMAIL_PATTERN)

Clock = Callable[[], int]


def now_ms() -> int:
    """Current wall-clock time as integer epoch milliseconds."""
    return int(time.time() * 1000)


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email))
