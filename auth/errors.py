"""
auth/errors.py -- Domain error taxonomy for the auth subsystem.

Every failure the auth services raise deliberately is an AuthError subclass
carrying an HTTP status code, a machine-readable code, and a message that is
safe to show to the caller. api/main.py renders them into the response
envelope; anything that is not an AuthError is treated as unexpected and
answered with a generic 500.

Messages for credential and block failures are generic on purpose: they
must not reveal which field was wrong, why an address was blocked, or how
many attempts remain.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base exception for all authentication errors."""

    status_code: int = 400
    code: str = "auth_error"
    default_message: str = "Authentication error."

    def __init__(self, message: str | None = None, errors: dict | list | None = None):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)


class ValidationError(AuthError):
    code = "validation_error"
    default_message = "Validation failed."


class InvalidCredential(AuthError):
    status_code = 401
    code = "invalid_credentials"
    default_message = "Invalid credentials."


class Unverified(AuthError):
    status_code = 403
    code = "unverified"
    default_message = "Please verify your email before logging in."


class Forbidden(AuthError):
    status_code = 403
    code = "forbidden"
    default_message = "Access denied."


class Blocked(Forbidden):
    """Raised by the brute-force gate. Carries no reason or threshold."""


class NotFound(AuthError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found."


class Conflict(AuthError):
    code = "conflict"
    default_message = "The request conflicts with existing data."


class DuplicateEmail(Conflict):
    code = "duplicate_email"
    default_message = "Email already registered."


class AlreadyDone(AuthError):
    code = "already_done"
    default_message = "Email already verified."


class InvalidCode(AuthError):
    code = "invalid_code"
    default_message = "Invalid verification code."


class Expired(AuthError):
    code = "expired"
    default_message = "Verification code has expired."


class InvalidOrExpiredToken(AuthError):
    code = "invalid_or_expired_token"
    default_message = "Invalid or expired password reset token."


class RateLimited(AuthError):
    status_code = 429
    code = "rate_limited"
    default_message = "Too many requests."


class Unexpected(AuthError):
    status_code = 500
    code = "internal_error"
    default_message = "An unexpected error occurred."


class IdentifierExhausted(Unexpected):
    """Raised when a unique identifier could not be generated in N attempts."""
