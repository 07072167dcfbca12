"""
auth/guard.py -- Brute-force defense: failed-attempt counting and the address block list (BruteForceGuard).

Admission gate: login and registration call ensure_allowed(address) before
doing any credential work. A blocked address gets a generic Blocked (403) --
the caller learns neither the reason nor the threshold [M2].

Counting: every failed login is an append-only LOGIN_FAILED activity row.
After each failure the guard counts LOGIN_FAILED rows for that address in
the trailing window (Settings.failed_login_window_seconds). Reaching
Settings.failed_login_threshold inserts a BlockedAddress row. Insert-then-
count means concurrent failures are never lost, and UNIQUE(address) means
concurrent blockers collapse into one block.

Expiry: with Settings.block_ttl_seconds == 0 (default) a block is permanent
until an admin removes it. A positive TTL makes blocks expire lazily: the
next lookup past the TTL deletes the row and lets the request through.
Either way, failures recorded before an unblock do not count toward the
next block.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from auth.errors import Blocked
from auth.models import Activity, ActivityStatus, ActivityType, BlockedAddress, Location
from auth.store import RecordStore
from core.clock import utc_now
from core.config import Settings

logger = logging.getLogger("sentinel.auth.guard")

BLOCK_REASON_FAILED_LOGINS = "too many failed login attempts"


class BruteForceGuard:
    """Tracks failed logins per address and maintains the block list."""

    def __init__(self, store: RecordStore, settings: Settings, clock: Callable[[], datetime] = utc_now) -> None:
        self._store = store
        self._threshold = settings.failed_login_threshold
        self._window = timedelta(seconds=settings.failed_login_window_seconds)
        self._block_ttl = timedelta(seconds=settings.block_ttl_seconds) if settings.block_ttl_seconds > 0 else None
        self._clock = clock

    def is_blocked(self, address: str) -> bool:
        entry = self._store.get_blocked(address)
        if entry is None:
            return False
        if self._block_ttl is not None and self._clock() >= entry.blocked_at + self._block_ttl:
            self._lift(address, "expired")
            return False
        return True

    def ensure_allowed(self, address: str) -> None:
        """Raise Blocked if address is on the block list."""
        if self.is_blocked(address):
            raise Blocked()

    def record_failed_login(
        self,
        address: str,
        *,
        user_id: int | None = None,
        fingerprint: str | None = None,
        location: Location | None = None,
        reason: str = "invalid_credentials",
    ) -> bool:
        """Append a LOGIN_FAILED row and block the address if the threshold is reached.

        Returns True if this failure caused a new block.
        """
        now = self._clock()
        self._store.add_activity(
            Activity(
                activity_type=ActivityType.LOGIN_FAILED.value,
                status=ActivityStatus.FAILED.value,
                user_id=user_id,
                address=address,
                fingerprint=fingerprint,
                location=location or Location.unknown(),
                details={"reason": reason},
                created_at=now,
            )
        )
        # Failures from before the last unblock do not count again.
        since = now - self._window
        lifted_at = self._store.last_activity_at(address, ActivityType.ADDRESS_UNBLOCKED.value)
        if lifted_at is not None and lifted_at > since:
            since = lifted_at
        failures = self._store.count_activities(address, ActivityType.LOGIN_FAILED.value, since)
        if failures < self._threshold:
            return False
        return self.block(address, BLOCK_REASON_FAILED_LOGINS, failures=failures)

    def block(self, address: str, reason: str, failures: int | None = None) -> bool:
        """Add address to the block list. Returns False if it was already blocked."""
        if not self._store.block_address(address, reason):
            return False
        details = {"reason": reason}
        if failures is not None:
            details["failures"] = failures
        self._store.add_activity(
            Activity(
                activity_type=ActivityType.ADDRESS_BLOCKED.value,
                status=ActivityStatus.SUCCESS.value,
                address=address,
                details=details,
                created_at=self._clock(),
            )
        )
        logger.warning("Blocked address %s: %s", address, reason)
        return True

    def unblock(self, address: str) -> bool:
        """Remove address from the block list. Returns False if it was not blocked."""
        return self._lift(address, "admin")

    def _lift(self, address: str, cause: str) -> bool:
        if not self._store.unblock_address(address):
            return False
        self._store.add_activity(
            Activity(
                activity_type=ActivityType.ADDRESS_UNBLOCKED.value,
                status=ActivityStatus.SUCCESS.value,
                address=address,
                details={"cause": cause},
                created_at=self._clock(),
            )
        )
        logger.info("Unblocked address %s (%s)", address, cause)
        return True

    def list_blocked(self) -> list[BlockedAddress]:
        return self._store.list_blocked()
