"""
API request and response models for the Sentinel REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Input rules live on the fields themselves: each field declares its own typed
constraint (length bounds, pattern, EmailStr, enum), and the few rules that
need code (password strength, confirmation match) are field or model
validators. Validation failures are rendered as 400 with per-field errors by
the RequestValidationError handler in api/main.py.

Every response, success or failure, uses the same envelope:

    {"status": "success" | "error", "message": str, "data": ..., "errors": ...}

data and errors are omitted when empty.
"""

from __future__ import annotations

import re
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from auth.models import Activity, BlockedAddress, Role, Session, TokenPair, User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PHONE_PATTERN = r"^\+?[1-9]\d{1,14}$"
CODE_PATTERN = r"^\d{6}$"
PASSWORD_MIN_LENGTH = 8
# bcrypt only sees 72 bytes; longer passwords would be silently truncated.
PASSWORD_MAX_LENGTH = 72


def _check_password_strength(value: str) -> str:
    if not re.search(r"[a-z]", value):
        raise ValueError("Password must contain a lowercase letter.")
    if not re.search(r"[A-Z]", value):
        raise ValueError("Password must contain an uppercase letter.")
    if not re.search(r"\d", value):
        raise ValueError("Password must contain a digit.")
    return value


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


def _envelope(status: str, message: str, data: Any = None, errors: Any = None) -> dict:
    body: dict = {"status": status, "message": message}
    if data is not None:
        body["data"] = jsonable_encoder(data)
    if errors is not None:
        body["errors"] = jsonable_encoder(errors)
    return body


def success_response(data: Any = None, message: str = "OK", status_code: int = 200) -> JSONResponse:
    body = _envelope("success", message, data=data)
    resp = JSONResponse(status_code=status_code, content=body)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def error_response(
    status_code: int, message: str, errors: Any = None, headers: dict[str, str] | None = None
) -> JSONResponse:
    body = _envelope("error", message, errors=errors)
    return JSONResponse(status_code=status_code, content=body, headers=headers)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=2, max_length=50)
    email: EmailStr
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)
    password_confirmation: str = Field(max_length=PASSWORD_MAX_LENGTH)

    @field_validator("password")
    @classmethod
    def strong_password(cls, value: str) -> str:
        return _check_password_strength(value)

    @model_validator(mode="after")
    def passwords_match(self) -> "RegisterRequest":
        if self.password != self.password_confirmation:
            raise ValueError("Passwords do not match.")
        return self


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    No strength rules here: a login must be judged by the stored hash only,
    never by whether the attempt looks like a valid new password.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    password: str = Field(min_length=1, max_length=255)


class VerifyEmailRequest(BaseModel):
    """Request body for POST /api/v1/auth/verify-email."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    code: str = Field(pattern=CODE_PATTERN)


class EmailRequest(BaseModel):
    """Request body for resend-verification and forgot-password."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr


class ResetPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/reset-password."""

    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = Field(min_length=1, max_length=256)
    password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)
    password_confirmation: str = Field(max_length=PASSWORD_MAX_LENGTH)

    @field_validator("password")
    @classmethod
    def strong_password(cls, value: str) -> str:
        return _check_password_strength(value)

    @model_validator(mode="after")
    def passwords_match(self) -> "ResetPasswordRequest":
        if self.password != self.password_confirmation:
            raise ValueError("Passwords do not match.")
        return self


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh-token."""

    model_config = ConfigDict(str_strip_whitespace=True)

    refresh_token: str = Field(min_length=1, max_length=256)


class RolePatch(BaseModel):
    """Request body for PATCH /api/v1/admin/users/{id}."""

    role: Role


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


class UserOut(BaseModel):
    """Public view of a user. Never includes hashes, codes or tokens."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    name: str
    phone: Optional[str]
    role: str
    verified: bool
    agent_code: Optional[str]
    wallet_balance: str
    identification_status: str
    email_verified_at: Optional[str]
    last_login: Optional[str]
    created_at: Optional[str]

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            phone=user.phone,
            role=user.role,
            verified=user.verified,
            agent_code=user.agent_code,
            wallet_balance=str(user.wallet_balance),
            identification_status=user.identification_status,
            email_verified_at=_iso(user.email_verified_at),
            last_login=_iso(user.last_login),
            created_at=_iso(user.created_at),
        )


class TokenOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str
    expires_in: int

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenOut":
        return cls(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type=pair.token_type,
            expires_in=pair.expires_in,
        )


class SessionOut(BaseModel):
    """One session as shown to its owner. The session token itself is never listed."""

    model_config = ConfigDict(frozen=True)

    id: int
    device: str
    browser: str
    os: str
    device_type: str
    address: str
    location: dict
    created_at: str
    expires_at: str
    last_activity: str
    active: bool
    current: bool = False

    @classmethod
    def from_session(cls, session: Session, current_id: int | None = None) -> "SessionOut":
        loc = session.location
        return cls(
            id=session.id,
            device=session.device.display_name,
            browser=session.device.browser,
            os=session.device.os,
            device_type=session.device.device_type,
            address=session.address,
            location={
                "country": loc.country,
                "region": loc.region,
                "city": loc.city,
                "latitude": loc.latitude,
                "longitude": loc.longitude,
            },
            created_at=session.created_at.isoformat(),
            expires_at=session.expires_at.isoformat(),
            last_activity=session.last_activity.isoformat(),
            active=session.active,
            current=current_id is not None and session.id == current_id,
        )


class ActivityOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    type: str
    status: str
    session_id: Optional[int]
    address: Optional[str]
    location: Optional[str]
    details: dict
    created_at: str

    @classmethod
    def from_activity(cls, activity: Activity) -> "ActivityOut":
        loc = activity.location
        parts = [p for p in (loc.city, loc.region, loc.country) if p]
        return cls(
            id=activity.id,
            type=activity.activity_type,
            status=activity.status,
            session_id=activity.session_id,
            address=activity.address,
            location=", ".join(parts) if parts else None,
            details=activity.details,
            created_at=activity.created_at.isoformat(),
        )


class BlockedAddressOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str
    reason: str
    blocked_at: str

    @classmethod
    def from_blocked(cls, entry: BlockedAddress) -> "BlockedAddressOut":
        return cls(address=entry.address, reason=entry.reason, blocked_at=entry.blocked_at.isoformat())


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
