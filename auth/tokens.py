"""
auth/tokens.py -- Access/refresh token issuance and rotation (TokenIssuer).

Security design decisions:
  Access tokens: python-jose with HS256. Signed with Settings.secret_key and
       carry sub (user id as a string), role, sid (the session the pair was
       issued with), type="access", iat and exp. Validity is cryptographic
       only -- nothing is looked up, so an access token stays valid until its
       own expiry even after logout. That is an accepted trade-off; keep
       Settings.access_token_expire_seconds short.

  Refresh tokens: secrets.token_hex(Settings.refresh_token_bytes), opaque.
       The user row stores only the SHA-256 digest, one per user. Issuing a
       new pair overwrites the digest, which invalidates the previous token.

  Rotation: refresh() is a compare-and-swap on the stored digest
       (RecordStore.rotate_refresh_token). Two requests presenting the same
       token race on one UPDATE; exactly one wins, the loser gets
       InvalidCredential, and the token that stays valid is the winner's.

  Login check: authenticate() always runs bcrypt, against a dummy hash when
       the email is unknown, so response time does not reveal which emails
       are registered [C1].

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from jose import JWTError, jwt

from auth.codes import generate_opaque_token, hash_token
from auth.errors import InvalidCredential
from auth.models import TokenPair, User
from auth.passwords import CredentialHasher
from auth.store import RecordStore
from core.clock import utc_now
from core.config import Settings

logger = logging.getLogger("sentinel.auth")

_ALGORITHM = "HS256"
_ACCESS_TYPE = "access"


class TokenIssuer:
    """Mints access tokens and manages the per-user refresh token."""

    def __init__(
        self,
        store: RecordStore,
        hasher: CredentialHasher,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._secret = settings.secret_key
        self._access_ttl = settings.access_token_expire_seconds
        self._rotation = settings.refresh_token_rotation
        self._refresh_bytes = settings.refresh_token_bytes
        self._clock = clock

    # ------------------------------------------------------------------
    # JWT encode / decode
    # ------------------------------------------------------------------

    def create_access_token(self, user: User, session_id: int | None = None) -> str:
        now = self._clock()
        payload = {
            "sub": str(user.id),
            "role": user.role,
            "sid": session_id,
            "type": _ACCESS_TYPE,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=self._access_ttl)).timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)

    def decode_access_token(self, token: str) -> dict | None:
        """Decode and verify a JWT. Returns the payload dict or None on any failure.

        Expiry is checked against the injected clock rather than the wall
        clock so tests can move time.
        """
        try:
            payload = jwt.decode(token, self._secret, algorithms=[_ALGORITHM], options={"verify_exp": False})
        except JWTError:
            return None
        if payload.get("type") != _ACCESS_TYPE or "sub" not in payload or "exp" not in payload:
            return None
        if not isinstance(payload["exp"], int) or self._clock().timestamp() >= payload["exp"]:
            return None
        try:
            payload["user_id"] = int(payload["sub"])
        except (TypeError, ValueError):
            return None
        return payload

    # ------------------------------------------------------------------
    # Credential check (constant-time) [C1]
    # ------------------------------------------------------------------

    def authenticate(self, email: str, password: str) -> User | None:
        """Return the live user whose password matches, or None.

        Verification status is not checked here; the caller decides what an
        unverified account may do.
        """
        user = self._store.get_by_email(email)
        if user is None:
            # Equalize timing -- do NOT return early before running bcrypt [C1]
            self._hasher.burn(password)
            return None
        if not self._hasher.verify(password, user.password_hash):
            return None
        return user

    # ------------------------------------------------------------------
    # Issue / refresh / revoke
    # ------------------------------------------------------------------

    def issue(self, user: User, session_id: int | None = None) -> TokenPair:
        """Mint a fresh pair. The new refresh token replaces any previous one."""
        refresh_token = generate_opaque_token(self._refresh_bytes)
        self._store.set_refresh_token(user.id, hash_token(refresh_token), session_id)
        return TokenPair(
            access_token=self.create_access_token(user, session_id),
            refresh_token=refresh_token,
            expires_in=self._access_ttl,
        )

    def refresh(self, refresh_token: str) -> tuple[User, TokenPair]:
        """Exchange a refresh token for a new pair (rotation on use).

        Raises InvalidCredential if the token is unknown, belongs to a deleted
        account, or lost a concurrent rotation race.
        """
        if not refresh_token:
            raise InvalidCredential("Invalid refresh token.")
        digest = hash_token(refresh_token)
        user = self._store.get_by_refresh_token_hash(digest)
        if user is None:
            raise InvalidCredential("Invalid refresh token.")

        if not self._rotation:
            return user, TokenPair(
                access_token=self.create_access_token(user, user.refresh_session_id),
                refresh_token=refresh_token,
                expires_in=self._access_ttl,
            )

        new_token = generate_opaque_token(self._refresh_bytes)
        if not self._store.rotate_refresh_token(user.id, digest, hash_token(new_token)):
            logger.warning("Refresh token for user %s was rotated concurrently; rejecting reuse", user.id)
            raise InvalidCredential("Invalid refresh token.")
        return user, TokenPair(
            access_token=self.create_access_token(user, user.refresh_session_id),
            refresh_token=new_token,
            expires_in=self._access_ttl,
        )

    def revoke(self, user_id: int) -> bool:
        """Clear the stored refresh token. Idempotent."""
        return self._store.clear_refresh_token(user_id)
