"""
core/clock.py -- Wall-clock helper shared by every time-dependent component.

Components accept a zero-argument ``clock`` callable that defaults to
utc_now(). Tests pass a frozen clock instead so expiry boundaries can be
asserted exactly.
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
