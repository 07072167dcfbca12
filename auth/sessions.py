"""
auth/sessions.py -- Server-side session lifecycle and login anomaly checks (SessionManager).

State machine per session:

    ACTIVE --(expiry noticed on lookup | logout | revocation | password reset)--> INACTIVE

INACTIVE is terminal. Sessions are never deleted; the inactive rows are the
audit trail.

Expiry is fixed at creation (created_at + Settings.session_ttl_seconds) and
never extended by activity. Expired sessions are reaped lazily: the lookup
that notices the expiry flips the row to inactive. There is no background
sweep.

Session tokens are opaque random strings handed to the client once. Only
their SHA-256 digest is stored, so a database read does not yield usable
tokens.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from auth.codes import generate_session_token, hash_token
from auth.device import DeviceDetector, fingerprint
from auth.geo import GeoResolver, is_suspicious_location
from auth.models import (
    Activity,
    ActivityStatus,
    ActivityType,
    Device,
    Location,
    LoginRisk,
    RequestContext,
    Session,
    User,
)
from auth.store import RecordStore
from core.clock import utc_now
from core.config import Settings

logger = logging.getLogger("sentinel.auth.sessions")


class SessionManager:
    """Creates, validates and invalidates sessions; records devices and activity.

    Usage:
        manager = SessionManager(store, geo, settings)
        session, token = manager.create_session(user, context)
        manager.validate_session(token)        # Session while active
        manager.invalidate_session(session.id)
    """

    def __init__(
        self,
        store: RecordStore,
        geo: GeoResolver,
        settings: Settings,
        detector: DeviceDetector | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._geo = geo
        self._detector = detector or DeviceDetector()
        self._ttl = timedelta(seconds=settings.session_ttl_seconds)
        self._distance_km = settings.suspicious_distance_km
        self._clock = clock

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_session(
        self,
        user: User,
        context: RequestContext,
        activity_type: ActivityType = ActivityType.LOGIN,
        location: Location | None = None,
    ) -> tuple[Session, str]:
        """Open a session for user and return (session, raw session token).

        location may be passed in when the caller already resolved it (the
        login flow does, for the anomaly check) to avoid a second lookup.
        """
        now = self._clock()
        device_fp = fingerprint(context)
        info = self._detector.detect(context.user_agent)
        if location is None:
            location = self._geo.lookup(context.address)

        self._store.upsert_device(Device(user_id=user.id, fingerprint=device_fp, info=info))

        raw_token = generate_session_token()
        session = Session(
            user_id=user.id,
            token_hash=hash_token(raw_token),
            fingerprint=device_fp,
            created_at=now,
            expires_at=now + self._ttl,
            last_activity=now,
            user_agent=context.user_agent,
            address=context.address,
            device=info,
            location=location,
        )
        session.id = self._store.create_session(session)

        self.log_activity(
            activity_type,
            ActivityStatus.SUCCESS,
            user_id=user.id,
            session_id=session.id,
            context=context,
            fingerprint=device_fp,
            location=location,
            details={"device": info.display_name},
        )
        logger.info("Session %s opened for user %s (%s)", session.id, user.id, info.display_name)
        return session, raw_token

    def validate_session(self, token: str) -> Session | None:
        """Return the active session for token, or None.

        Lazy expiry: a session found past its expiry is deactivated here and
        reported invalid. Calling again afterwards is still just None.
        """
        if not token:
            return None
        session = self._store.get_active_session_by_token_hash(hash_token(token))
        if session is None:
            return None
        if self._clock() > session.expires_at:
            if self._store.deactivate_session(session.id):
                logger.info("Session %s expired on lookup", session.id)
            return None
        return session

    def invalidate_session(self, session_id: int) -> bool:
        """Deactivate one session. Idempotent; returns True only if it was active."""
        return self._store.deactivate_session(session_id)

    def invalidate_all_sessions_for_user(self, user_id: int) -> int:
        """Deactivate every active session of a user. Idempotent; returns the count changed."""
        count = self._store.deactivate_user_sessions(user_id)
        if count:
            logger.info("Invalidated %d session(s) for user %s", count, user_id)
        return count

    def get_session(self, session_id: int) -> Session | None:
        return self._store.get_session(session_id)

    def list_active_sessions(self, user_id: int) -> list[Session]:
        return self._store.list_active_sessions(user_id)

    # ------------------------------------------------------------------
    # Anomaly detection
    # ------------------------------------------------------------------

    def assess_login(self, user_id: int, context: RequestContext) -> LoginRisk:
        """Compare this request against the user's device and location history.

        Must run before create_session(), which records the current device
        and location and would make every login look familiar.
        """
        device_fp = fingerprint(context)
        location = self._geo.lookup(context.address)
        known_device = device_fp in self._store.list_device_fingerprints(user_id)
        suspicious_location = is_suspicious_location(
            location, self._store.list_session_locations(user_id), self._distance_km
        )
        return LoginRisk(
            known_device=known_device,
            suspicious_location=suspicious_location,
            fingerprint=device_fp,
            location=location,
        )

    def is_suspicious(self, user_id: int, context: RequestContext) -> bool:
        return self.assess_login(user_id, context).suspicious

    # ------------------------------------------------------------------
    # Activity log
    # ------------------------------------------------------------------

    def log_activity(
        self,
        activity_type: ActivityType,
        status: ActivityStatus,
        *,
        user_id: int | None = None,
        session_id: int | None = None,
        context: RequestContext | None = None,
        fingerprint: str | None = None,
        location: Location | None = None,
        details: dict | None = None,
    ) -> int:
        """Append one Activity row. Activity rows are never updated or deleted."""
        return self._store.add_activity(
            Activity(
                activity_type=activity_type.value,
                status=status.value,
                user_id=user_id,
                session_id=session_id,
                address=context.address if context else None,
                fingerprint=fingerprint,
                location=location or Location.unknown(),
                details=details or {},
                created_at=self._clock(),
            )
        )
