"""
core/clock.py -- Time source shared by token issuance and the session store.

Components take a Clock (a zero-argument callable returning an aware UTC
datetime) instead of calling datetime.now() directly, so tests can move time
forward without sleeping.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
