"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. RecordStore is the repository; the
_row_to_* functions are the mappers. Service and route code never touches
SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Concurrency:
  The service is stateless per request, so every race is closed here with
  single-statement atomicity rather than a read followed by a write:

  - Email uniqueness is a partial UNIQUE index over live (non-tombstoned)
    rows. Callers catch IntegrityError; a prior read is only a fast path.
  - Refresh-token rotation is a compare-and-swap UPDATE keyed on the old
    digest. Of two requests presenting the same token exactly one sees
    rowcount == 1.
  - Email verification and password reset consume their one-time secret
    the same way: the UPDATE matches only while the code or reset digest is
    still the stored one.
  - Wallet adjustments are a conditional UPDATE that refuses to go below
    zero. Balances are stored as integer minor units.
  - Devices are upserted by insert-then-update-on-conflict against
    UNIQUE(user_id, fingerprint). Blocked addresses are UNIQUE(address).
  - Failed-attempt counting is an append-only insert plus COUNT(*), so
    parallel increments are never lost.

Timestamps are ISO-8601 UTC strings with fixed microsecond precision, which
keeps lexical order equal to chronological order for range queries.

DB path: auth/sentinel_auth.db by default (see core.config.Settings.database_url).
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Column,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import Activity, BlockedAddress, Device, DeviceInfo, Location, Session, User
from core.clock import utc_now

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False),  # lower-cased on write
    Column("name", String(100), nullable=False, server_default=""),
    Column("phone", String(20)),
    Column("password_hash", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default="user"),
    Column("verified", Integer, nullable=False, server_default="0"),
    Column("agent_code", String(16), unique=True),
    Column("wallet_cents", Integer, nullable=False, server_default="0"),
    Column("identification_status", String(20), nullable=False, server_default="none"),
    Column("verification_code", String(6)),
    Column("verification_code_expires_at", String(32)),
    Column("email_verified_at", String(32)),
    Column("reset_token_hash", String(64), index=True),  # SHA-256 hex
    Column("reset_token_expires_at", String(32)),
    Column("refresh_token_hash", String(64), index=True),  # SHA-256 hex
    Column("refresh_session_id", Integer),
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("deleted_at", String(32)),  # tombstone
)

# Only live rows compete for an email address, so a tombstoned account does
# not lock its address forever.
Index(
    "uq_users_email_live",
    _users.c.email,
    unique=True,
    sqlite_where=_users.c.deleted_at.is_(None),
    postgresql_where=_users.c.deleted_at.is_(None),
)

_sessions = Table(
    "sessions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),
    Column("fingerprint", String(64), nullable=False),
    Column("user_agent", Text),
    Column("address", String(45)),
    Column("browser", String(50)),
    Column("os", String(50)),
    Column("device_type", String(20)),
    Column("device_name", String(120)),
    Column("country", String(100)),
    Column("region", String(100)),
    Column("city", String(100)),
    Column("latitude", Float),
    Column("longitude", Float),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("last_activity", String(32), nullable=False),
    Column("active", Integer, nullable=False, server_default="1"),
)

_devices = Table(
    "devices",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("fingerprint", String(64), nullable=False),
    Column("browser", String(50)),
    Column("os", String(50)),
    Column("device_type", String(20)),
    Column("device_name", String(120)),
    Column("first_seen_at", String(32), nullable=False),
    Column("last_used_at", String(32), nullable=False),
    UniqueConstraint("user_id", "fingerprint", name="uq_device_user_fingerprint"),
)

_activities = Table(
    "activities",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, index=True),  # NULL for unknown identities
    Column("session_id", Integer),
    Column("activity_type", String(40), nullable=False),
    Column("status", String(10), nullable=False),
    Column("address", String(45)),
    Column("fingerprint", String(64)),
    Column("country", String(100)),
    Column("region", String(100)),
    Column("city", String(100)),
    Column("latitude", Float),
    Column("longitude", Float),
    Column("details", Text),  # JSON object serialized as text
    Column("created_at", String(32), nullable=False),
)

Index("ix_activities_address_type_time", _activities.c.address, _activities.c.activity_type, _activities.c.created_at)

_blocked = Table(
    "blocked_addresses",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("address", String(45), nullable=False, unique=True),
    Column("reason", Text, nullable=False),
    Column("blocked_at", String(32), nullable=False),
)

# Fields update_user() accepts. wallet_cents is absent on purpose: balance
# changes go through adjust_wallet() so the non-negative check stays atomic.
_USER_MUTABLE: frozenset[str] = frozenset(
    {
        "name",
        "phone",
        "password_hash",
        "role",
        "verified",
        "identification_status",
        "verification_code",
        "verification_code_expires_at",
        "email_verified_at",
        "reset_token_hash",
        "reset_token_expires_at",
        "last_login",
    }
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _to_cents(amount: Decimal) -> int:
    """Convert a decimal amount to integer minor units.

    Raises ValueError for amounts with more than two decimal places rather
    than rounding money silently.
    """
    quantized = amount.quantize(Decimal("0.01"))
    if quantized != amount:
        raise ValueError(f"Amount {amount} has more than two decimal places")
    return int(quantized * 100)


def _from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class RecordStore:
    """Repository for User, Session, Device, Activity and BlockedAddress entities.

    Usage:
        store = RecordStore("sqlite:///:memory:")
        user_id = store.create_user(User(email="ama@example.com", password_hash=hasher.hash("Secret123")))
        user = store.get_by_email("ama@example.com")
        store.close()
    """

    def __init__(self, db_url: str, clock: Callable[[], datetime] = utc_now) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)
        self._clock = clock

    def _now_iso(self) -> str:
        return _to_iso(self._clock())

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if a live user already owns the
        email or the agent code is taken. Callers tell the two apart with
        email_in_use() [uniqueness race].
        """
        now = self._now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email.strip().lower(),
                    name=user.name,
                    phone=user.phone,
                    password_hash=user.password_hash,
                    role=user.role,
                    verified=1 if user.verified else 0,
                    agent_code=user.agent_code,
                    wallet_cents=_to_cents(user.wallet_balance),
                    identification_status=user.identification_status,
                    verification_code=user.verification_code,
                    verification_code_expires_at=_to_iso(user.verification_code_expires_at),
                    email_verified_at=_to_iso(user.email_verified_at),
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def email_in_use(self, email: str) -> bool:
        """Return True if a live (non-tombstoned) user owns this email."""
        return self.get_by_email(email) is not None

    def get_by_id(self, user_id: int, include_deleted: bool = False) -> User | None:
        query = _users.select().where(_users.c.id == user_id)
        if not include_deleted:
            query = query.where(_users.c.deleted_at.is_(None))
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str, include_deleted: bool = False) -> User | None:
        """Look up a user by case-normalized email. Live rows win over tombstones."""
        query = _users.select().where(_users.c.email == email.strip().lower())
        if not include_deleted:
            query = query.where(_users.c.deleted_at.is_(None))
        query = query.order_by(_users.c.deleted_at.is_not(None), _users.c.id.desc())
        with self.engine.connect() as conn:
            row = conn.execute(query).first()
        return _row_to_user(row) if row is not None else None

    def get_by_refresh_token_hash(self, digest: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.refresh_token_hash == digest) & _users.c.deleted_at.is_(None))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_reset_token_hash(self, digest: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.reset_token_hash == digest) & _users.c.deleted_at.is_(None))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on a live user.

        Accepted fields: see _USER_MUTABLE. datetime values are converted to
        ISO strings and verified is converted to int for SQLite. Unknown
        fields raise ValueError -- fail fast rather than silently ignore.

        Returns True if a row was updated, False if user_id was not found
        or the user is tombstoned.
        """
        unknown = set(fields) - _USER_MUTABLE
        if unknown:
            raise ValueError(f"Unknown or immutable user fields: {sorted(unknown)!r}")
        values: dict = {}
        for key, value in fields.items():
            if isinstance(value, datetime):
                value = _to_iso(value)
            elif key == "verified":
                value = 1 if value else 0
            values[key] = value
        values["updated_at"] = self._now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where((_users.c.id == user_id) & _users.c.deleted_at.is_(None)).values(**values)
            )
            conn.commit()
        return result.rowcount > 0

    def set_refresh_token(self, user_id: int, digest: str, session_id: int | None) -> bool:
        """Overwrite the stored refresh-token digest. The previous token stops working."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & _users.c.deleted_at.is_(None))
                .values(refresh_token_hash=digest, refresh_session_id=session_id, updated_at=self._now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def rotate_refresh_token(self, user_id: int, expected_digest: str, new_digest: str) -> bool:
        """Atomically replace expected_digest with new_digest.

        Compare-and-swap: the WHERE clause includes the old digest, so two
        concurrent rotations of the same token cannot both succeed. Returns
        False when the stored digest no longer matches.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(
                    (_users.c.id == user_id)
                    & (_users.c.refresh_token_hash == expected_digest)
                    & _users.c.deleted_at.is_(None)
                )
                .values(refresh_token_hash=new_digest, updated_at=self._now_iso())
            )
            conn.commit()
        return result.rowcount == 1

    def mark_verified(self, user_id: int, code: str, now: datetime) -> bool:
        """Consume code and mark the user verified, only if code is still the stored one.

        Returns False when the user is already verified or holds a different
        code, so of two concurrent verifications exactly one succeeds.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(
                    (_users.c.id == user_id)
                    & (_users.c.verified == 0)
                    & (_users.c.verification_code == code)
                    & _users.c.deleted_at.is_(None)
                )
                .values(
                    verified=1,
                    email_verified_at=_to_iso(now),
                    verification_code=None,
                    verification_code_expires_at=None,
                    updated_at=self._now_iso(),
                )
            )
            conn.commit()
        return result.rowcount == 1

    def consume_reset_token(self, user_id: int, expected_digest: str, password_hash: str, now: datetime) -> bool:
        """Set password_hash and clear the reset token if expected_digest is still live.

        Compare-and-swap on the digest and its expiry: a reset token changes
        the password at most once.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(
                    (_users.c.id == user_id)
                    & (_users.c.reset_token_hash == expected_digest)
                    & (_users.c.reset_token_expires_at >= _to_iso(now))
                    & _users.c.deleted_at.is_(None)
                )
                .values(
                    password_hash=password_hash,
                    reset_token_hash=None,
                    reset_token_expires_at=None,
                    updated_at=self._now_iso(),
                )
            )
            conn.commit()
        return result.rowcount == 1

    def clear_refresh_token(self, user_id: int) -> bool:
        """Forget the stored refresh token. Idempotent."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(refresh_token_hash=None, refresh_session_id=None, updated_at=self._now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def soft_delete_user(self, user_id: int) -> bool:
        """Tombstone a live user. Returns False if not found or already deleted."""
        now = self._now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & _users.c.deleted_at.is_(None))
                .values(deleted_at=now, updated_at=now)
            )
            conn.commit()
        return result.rowcount > 0

    def restore_user(self, user_id: int) -> bool:
        """Clear the tombstone on a soft-deleted user.

        Raises sqlalchemy.exc.IntegrityError if another live user registered
        the same email in the meantime. Returns False if the user does not
        exist or is not deleted.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & _users.c.deleted_at.is_not(None))
                .values(deleted_at=None, updated_at=self._now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def adjust_wallet(self, user_id: int, delta: Decimal) -> Decimal | None:
        """Add delta (may be negative) to a live user's wallet balance.

        The balance check and the write are one conditional UPDATE, so two
        concurrent debits can never drive the balance below zero. Returns the
        new balance, or None if the user was not found or the debit would
        overdraw the wallet.
        """
        cents = _to_cents(delta)
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(
                    (_users.c.id == user_id)
                    & _users.c.deleted_at.is_(None)
                    & (_users.c.wallet_cents + cents >= 0)
                )
                .values(wallet_cents=_users.c.wallet_cents + cents, updated_at=self._now_iso())
            )
            if result.rowcount == 0:
                return None
            balance = conn.execute(select(_users.c.wallet_cents).where(_users.c.id == user_id)).scalar()
        return _from_cents(balance)

    def count_active_admins(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_users)
                .where((_users.c.role == "admin") & _users.c.deleted_at.is_(None))
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.insert().values(
                    user_id=session.user_id,
                    token_hash=session.token_hash,
                    fingerprint=session.fingerprint,
                    user_agent=session.user_agent,
                    address=session.address,
                    browser=session.device.browser,
                    os=session.device.os,
                    device_type=session.device.device_type,
                    device_name=session.device.display_name,
                    country=session.location.country,
                    region=session.location.region,
                    city=session.location.city,
                    latitude=session.location.latitude,
                    longitude=session.location.longitude,
                    created_at=_to_iso(session.created_at),
                    expires_at=_to_iso(session.expires_at),
                    last_activity=_to_iso(session.last_activity),
                    active=1 if session.active else 0,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_session(self, session_id: int) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def get_active_session_by_token_hash(self, digest: str) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _sessions.select().where((_sessions.c.token_hash == digest) & (_sessions.c.active == 1))
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def deactivate_session(self, session_id: int) -> bool:
        """Flip active to 0. Returns True only for the call that changed it."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update().where((_sessions.c.id == session_id) & (_sessions.c.active == 1)).values(active=0)
            )
            conn.commit()
        return result.rowcount > 0

    def deactivate_user_sessions(self, user_id: int) -> int:
        """Deactivate every active session of a user. Returns how many changed."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update().where((_sessions.c.user_id == user_id) & (_sessions.c.active == 1)).values(active=0)
            )
            conn.commit()
        return result.rowcount

    def list_active_sessions(self, user_id: int) -> list[Session]:
        """Return active, unexpired sessions for a user (newest first)."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select()
                .where(
                    (_sessions.c.user_id == user_id)
                    & (_sessions.c.active == 1)
                    & (_sessions.c.expires_at > self._now_iso())
                )
                .order_by(_sessions.c.created_at.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def list_session_locations(self, user_id: int) -> list[Location]:
        """Return every resolved location recorded for a user's sessions, active or not."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(
                    _sessions.c.country,
                    _sessions.c.region,
                    _sessions.c.city,
                    _sessions.c.latitude,
                    _sessions.c.longitude,
                ).where(
                    (_sessions.c.user_id == user_id)
                    & _sessions.c.latitude.is_not(None)
                    & _sessions.c.longitude.is_not(None)
                )
            ).fetchall()
        return [
            Location(country=r.country, region=r.region, city=r.city, latitude=r.latitude, longitude=r.longitude)
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    def upsert_device(self, device: Device) -> None:
        """Insert the (user, fingerprint) row or refresh its attributes and last-used time."""
        now = self._now_iso()
        attrs = {
            "browser": device.info.browser,
            "os": device.info.os,
            "device_type": device.info.device_type,
            "device_name": device.info.display_name,
            "last_used_at": now,
        }
        with self.engine.connect() as conn:
            try:
                conn.execute(
                    _devices.insert().values(
                        user_id=device.user_id, fingerprint=device.fingerprint, first_seen_at=now, **attrs
                    )
                )
                conn.commit()
            except IntegrityError:
                # Known device (possibly inserted by a concurrent login): touch it instead.
                conn.rollback()
                conn.execute(
                    _devices.update()
                    .where((_devices.c.user_id == device.user_id) & (_devices.c.fingerprint == device.fingerprint))
                    .values(**attrs)
                )
                conn.commit()

    def list_device_fingerprints(self, user_id: int) -> set[str]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(_devices.c.fingerprint).where(_devices.c.user_id == user_id)).fetchall()
        return {r.fingerprint for r in rows}

    # ------------------------------------------------------------------
    # Activities (append-only)
    # ------------------------------------------------------------------

    def add_activity(self, activity: Activity) -> int:
        created_at = _to_iso(activity.created_at) if activity.created_at else self._now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _activities.insert().values(
                    user_id=activity.user_id,
                    session_id=activity.session_id,
                    activity_type=activity.activity_type,
                    status=activity.status,
                    address=activity.address,
                    fingerprint=activity.fingerprint,
                    country=activity.location.country,
                    region=activity.location.region,
                    city=activity.location.city,
                    latitude=activity.location.latitude,
                    longitude=activity.location.longitude,
                    details=json.dumps(activity.details or {}),
                    created_at=created_at,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def count_activities(self, address: str, activity_type: str, since: datetime) -> int:
        """Count activity rows of one type from one address at or after since."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_activities)
                .where(
                    (_activities.c.address == address)
                    & (_activities.c.activity_type == activity_type)
                    & (_activities.c.created_at >= _to_iso(since))
                )
            ).scalar()
        return result or 0

    def last_activity_at(self, address: str, activity_type: str) -> datetime | None:
        """Return the time of the newest activity of one type from one address, if any."""
        with self.engine.connect() as conn:
            value = conn.execute(
                select(func.max(_activities.c.created_at)).where(
                    (_activities.c.address == address) & (_activities.c.activity_type == activity_type)
                )
            ).scalar()
        return _from_iso(value)

    def list_activities(self, user_id: int, limit: int = 50) -> list[Activity]:
        """Return a user's most recent activity entries (newest first)."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _activities.select()
                .where(_activities.c.user_id == user_id)
                .order_by(_activities.c.created_at.desc(), _activities.c.id.desc())
                .limit(limit)
            ).fetchall()
        return [_row_to_activity(r) for r in rows]

    # ------------------------------------------------------------------
    # Blocked addresses
    # ------------------------------------------------------------------

    def get_blocked(self, address: str) -> BlockedAddress | None:
        with self.engine.connect() as conn:
            row = conn.execute(_blocked.select().where(_blocked.c.address == address)).fetchone()
        return _row_to_blocked(row) if row is not None else None

    def block_address(self, address: str, reason: str) -> bool:
        """Insert a block. Returns False if the address was already blocked."""
        try:
            with self.engine.connect() as conn:
                conn.execute(_blocked.insert().values(address=address, reason=reason, blocked_at=self._now_iso()))
                conn.commit()
        except IntegrityError:
            return False
        return True

    def unblock_address(self, address: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_blocked.delete().where(_blocked.c.address == address))
            conn.commit()
        return result.rowcount > 0

    def list_blocked(self) -> list[BlockedAddress]:
        with self.engine.connect() as conn:
            rows = conn.execute(_blocked.select().order_by(_blocked.c.blocked_at.desc())).fetchall()
        return [_row_to_blocked(r) for r in rows]

    def ping(self) -> None:
        """Run a trivial query. Raises SQLAlchemyError if the database is unreachable."""
        with self.engine.connect() as conn:
            conn.execute(select(1))

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        phone=row.phone,
        password_hash=row.password_hash,
        role=row.role,
        verified=bool(row.verified),
        agent_code=row.agent_code,
        wallet_balance=_from_cents(row.wallet_cents),
        identification_status=row.identification_status,
        verification_code=row.verification_code,
        verification_code_expires_at=_from_iso(row.verification_code_expires_at),
        email_verified_at=_from_iso(row.email_verified_at),
        reset_token_hash=row.reset_token_hash,
        reset_token_expires_at=_from_iso(row.reset_token_expires_at),
        refresh_token_hash=row.refresh_token_hash,
        refresh_session_id=row.refresh_session_id,
        last_login=_from_iso(row.last_login),
        created_at=_from_iso(row.created_at),
        updated_at=_from_iso(row.updated_at),
        deleted_at=_from_iso(row.deleted_at),
    )


def _row_to_location(row) -> Location:
    return Location(
        country=row.country,
        region=row.region,
        city=row.city,
        latitude=row.latitude,
        longitude=row.longitude,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        fingerprint=row.fingerprint,
        user_agent=row.user_agent or "",
        address=row.address or "",
        device=DeviceInfo(
            browser=row.browser or "Unknown",
            os=row.os or "Unknown",
            device_type=row.device_type or "desktop",
            display_name=row.device_name or "Unknown device",
        ),
        location=_row_to_location(row),
        created_at=_from_iso(row.created_at),
        expires_at=_from_iso(row.expires_at),
        last_activity=_from_iso(row.last_activity),
        active=bool(row.active),
    )



def _row_to_activity(row) -> Activity:
    return Activity(
        id=row.id,
        user_id=row.user_id,
        session_id=row.session_id,
        activity_type=row.activity_type,
        status=row.status,
        address=row.address,
        fingerprint=row.fingerprint,
        location=_row_to_location(row),
        details=json.loads(row.details) if row.details else {},
        created_at=_from_iso(row.created_at),
    )


def _row_to_blocked(row) -> BlockedAddress:
    return BlockedAddress(
        id=row.id,
        address=row.address,
        reason=row.reason,
        blocked_at=_from_iso(row.blocked_at),
    )
