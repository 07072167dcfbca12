"""
auth/verification.py -- Email verification codes and password-reset tokens (VerificationCodeManager).

Email verification:
  A 6-digit code with an absolute expiry (now + Settings.verification_code_ttl_seconds)
  is stored on the user row. Issuing a new code overwrites the old one, so a
  user never holds more than one live code. Codes are compared exactly; they
  are short-lived and the verify endpoint is rate-limited.

Password reset:
  A high-entropy opaque token is generated and only its SHA-256 digest is
  stored, with an absolute expiry (now + Settings.reset_token_ttl_seconds).
  A new request overwrites the previous digest. A successful reset changes
  the password, clears the reset fields and the refresh token, and
  deactivates every session of the user.

Expiry comparisons are strict: a code is still valid at exactly its expiry
instant and expired one microsecond later.

Both one-time secrets are consumed with a compare-and-swap in the store
(mark_verified, consume_reset_token), so two requests racing with the
same code or token cannot both succeed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from auth.codes import generate_opaque_token, generate_verification_code, hash_token
from auth.errors import AlreadyDone, Expired, InvalidCode, InvalidOrExpiredToken, NotFound
from auth.models import User
from auth.passwords import CredentialHasher
from auth.store import RecordStore
from core.clock import utc_now
from core.config import Settings

logger = logging.getLogger("sentinel.auth")


class VerificationCodeManager:
    """Issues and checks one-time email codes and password-reset tokens."""

    def __init__(
        self,
        store: RecordStore,
        hasher: CredentialHasher,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._code_ttl = timedelta(seconds=settings.verification_code_ttl_seconds)
        self._reset_ttl = timedelta(seconds=settings.reset_token_ttl_seconds)
        self._clock = clock

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    def issue_email_code(self, user: User) -> str:
        """Generate, store and return a new code for user, replacing any previous one."""
        code = generate_verification_code()
        expires_at = self._clock() + self._code_ttl
        self._store.update_user(user.id, verification_code=code, verification_code_expires_at=expires_at)
        user.verification_code = code
        user.verification_code_expires_at = expires_at
        return code

    def verify_email(self, email: str, code: str) -> User:
        """Mark the user verified if code matches and has not expired.

        Raises, in this order of precedence:
            NotFound      -- no live user with this email
            AlreadyDone   -- the user is already verified
            InvalidCode   -- no stored code, or it does not match
            Expired       -- now is past the code's expiry
        """
        user = self._store.get_by_email(email)
        if user is None:
            raise NotFound("User not found.")
        if user.verified:
            raise AlreadyDone("Email already verified.")
        if not user.verification_code or user.verification_code != code:
            raise InvalidCode("Invalid verification code.")
        now = self._clock()
        if user.verification_code_expires_at is None or now > user.verification_code_expires_at:
            raise Expired("Verification code has expired.")

        if not self._store.mark_verified(user.id, code, now):
            # Another request consumed the code between the read and this write.
            current = self._store.get_by_id(user.id)
            if current is not None and current.verified:
                raise AlreadyDone("Email already verified.")
            raise InvalidCode("Invalid verification code.")
        user.verified = True
        user.email_verified_at = now
        user.verification_code = None
        user.verification_code_expires_at = None
        logger.info("User %s verified their email", user.id)
        return user

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def issue_reset_token(self, user: User) -> str:
        """Generate a reset token, store its digest, and return the plaintext once."""
        token = generate_opaque_token(32)
        self._store.update_user(
            user.id,
            reset_token_hash=hash_token(token),
            reset_token_expires_at=self._clock() + self._reset_ttl,
        )
        return token

    def reset_password(self, token: str, new_password: str) -> tuple[User, int]:
        """Set a new password for the owner of token.

        Returns (user, number of sessions invalidated). Raises
        InvalidOrExpiredToken for an unknown or expired token; the two cases
        are deliberately indistinguishable to the caller.
        """
        if not token:
            raise InvalidOrExpiredToken()
        digest = hash_token(token)
        user = self._store.get_by_reset_token_hash(digest)
        if user is None:
            raise InvalidOrExpiredToken()
        now = self._clock()
        if user.reset_token_expires_at is None or now > user.reset_token_expires_at:
            raise InvalidOrExpiredToken()

        if not self._store.consume_reset_token(user.id, digest, self._hasher.hash(new_password), now):
            raise InvalidOrExpiredToken()
        # The old credential is assumed compromised: end every way back in.
        self._store.clear_refresh_token(user.id)
        invalidated = self._store.deactivate_user_sessions(user.id)
        logger.info("Password reset for user %s; %d session(s) invalidated", user.id, invalidated)
        return user, invalidated
