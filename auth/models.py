"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic beyond trivial derived
properties). Dataclasses own the domain shape; auth/store.py maps rows into
them and the auth services do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum


class Role(str, Enum):
    user = "user"
    admin = "admin"


class ActivityType(str, Enum):
    LOGIN = "LOGIN"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGIN_BLOCKED = "LOGIN_BLOCKED"
    SUSPICIOUS_LOGIN = "SUSPICIOUS_LOGIN"
    REGISTRATION = "REGISTRATION"
    REGISTRATION_BLOCKED = "REGISTRATION_BLOCKED"
    ADDRESS_BLOCKED = "ADDRESS_BLOCKED"
    ADDRESS_UNBLOCKED = "ADDRESS_UNBLOCKED"
    EMAIL_VERIFIED = "EMAIL_VERIFIED"
    EMAIL_VERIFICATION_FAILED = "EMAIL_VERIFICATION_FAILED"
    VERIFICATION_RESENT = "VERIFICATION_RESENT"
    PASSWORD_RESET_REQUESTED = "PASSWORD_RESET_REQUESTED"
    PASSWORD_RESET_COMPLETED = "PASSWORD_RESET_COMPLETED"
    PASSWORD_RESET_FAILED = "PASSWORD_RESET_FAILED"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    TOKEN_REFRESH_FAILED = "TOKEN_REFRESH_FAILED"
    LOGOUT = "LOGOUT"
    SESSION_REVOKED = "SESSION_REVOKED"
    ROLE_CHANGED = "ROLE_CHANGED"
    ACCOUNT_DELETED = "ACCOUNT_DELETED"
    ACCOUNT_RESTORED = "ACCOUNT_RESTORED"


class ActivityStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


@dataclass
class Location:
    """Approximate geographic position derived from a network address.

    latitude/longitude are None when the address could not be resolved
    (private range, missing database, lookup timeout). An unknown location
    never takes part in distance checks.
    """

    country: str | None = None
    region: str | None = None
    city: str | None = None
    latitude: float | None = None
    longitude: float | None = None

    @property
    def is_known(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @classmethod
    def unknown(cls) -> Location:
        return cls()


@dataclass
class DeviceInfo:
    """Device attributes parsed from a User-Agent header."""

    browser: str = "Unknown"
    os: str = "Unknown"
    device_type: str = "desktop"  # "mobile" | "tablet" | "desktop"
    display_name: str = "Unknown device"


@dataclass
class RequestContext:
    """The request metadata every security decision is derived from.

    Built once per HTTP request by auth.dependencies.get_request_context().
    """

    address: str
    user_agent: str = ""
    accept_language: str = ""


@dataclass
class User:
    """An identity record.

    email is stored lower-cased. Secrets never live here in plaintext:
    password_hash is bcrypt, reset_token_hash and refresh_token_hash are
    SHA-256 digests of the values handed to the user. verification_code is
    the exception -- it is short-lived and compared as-is.

    refresh_session_id is the session the current refresh token was issued
    with, so rotated access tokens keep pointing at the same session.

    id is None before the record is written to the database.
    """

    email: str
    password_hash: str
    name: str = ""
    phone: str | None = None
    role: str = Role.user.value
    verified: bool = False
    agent_code: str | None = None
    wallet_balance: Decimal = Decimal("0.00")
    identification_status: str = "none"  # "none" | "pending" | "approved" | "rejected"
    verification_code: str | None = None
    verification_code_expires_at: datetime | None = None
    email_verified_at: datetime | None = None
    reset_token_hash: str | None = None
    reset_token_expires_at: datetime | None = None
    refresh_token_hash: str | None = None
    refresh_session_id: int | None = None
    last_login: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None
    id: int | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass
class Session:
    """One authenticated device context.

    Only token_hash is persisted; the raw session token is returned to the
    caller once by SessionManager.create_session(). expires_at is always
    created_at + the configured TTL and is never extended.
    """

    user_id: int
    token_hash: str
    fingerprint: str
    created_at: datetime
    expires_at: datetime
    last_activity: datetime
    user_agent: str = ""
    address: str = ""
    device: DeviceInfo = field(default_factory=DeviceInfo)
    location: Location = field(default_factory=Location)
    active: bool = True
    id: int | None = None


@dataclass
class Device:
    """A (user, fingerprint) pair seen at least once. Never deleted."""

    user_id: int
    fingerprint: str
    info: DeviceInfo = field(default_factory=DeviceInfo)
    first_seen_at: datetime | None = None
    last_used_at: datetime | None = None
    id: int | None = None


@dataclass
class Activity:
    """Append-only audit entry. Records are only ever inserted."""

    activity_type: str
    status: str
    user_id: int | None = None
    session_id: int | None = None
    address: str | None = None
    fingerprint: str | None = None
    location: Location = field(default_factory=Location)
    details: dict = field(default_factory=dict)
    created_at: datetime | None = None
    id: int | None = None


@dataclass
class BlockedAddress:
    address: str
    reason: str
    blocked_at: datetime
    id: int | None = None


@dataclass
class TokenPair:
    """Credentials handed to a client after authentication or refresh."""

    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "bearer"


@dataclass
class LoginRisk:
    """Outcome of the anomaly check for one login attempt."""

    known_device: bool
    suspicious_location: bool
    fingerprint: str
    location: Location

    @property
    def suspicious(self) -> bool:
        return not self.known_device or self.suspicious_location
