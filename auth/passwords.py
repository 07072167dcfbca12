"""
auth/passwords.py -- Password hashing (CredentialHasher).

bcrypt directly, no passlib wrapper. Bcrypt is the right choice for
low-entropy secrets because its cost factor makes brute-forcing a stolen
hash set expensive. The cost factor comes from Settings.bcrypt_rounds and is
never user-controlled.

bcrypt only looks at the first 72 bytes of a password, and recent bcrypt
releases raise on longer input instead of truncating. Both hash() and
verify() truncate to 72 bytes themselves so hashing always succeeds and a
password verifies the same way regardless of the installed bcrypt version.
The API layer caps passwords at 72 characters anyway.
"""

from __future__ import annotations

import bcrypt

_BCRYPT_MAX_BYTES = 72


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


class CredentialHasher:
    """One-way, salted, adaptive-cost password hashing.

    Usage:
        hasher = CredentialHasher(rounds=12)
        stored = hasher.hash("Secret123")
        hasher.verify("Secret123", stored)   # True
    """

    def __init__(self, rounds: int = 12) -> None:
        self._rounds = rounds
        # Timing equalization dummy hash [C1]. Computed once so the first
        # login against an unknown email is not measurably faster.
        self._dummy_hash = self.hash("sentinel_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash with a fresh random salt."""
        return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=self._rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if plain matches hashed.

        A mismatch is a plain False. A stored value that is not a bcrypt hash
        raises ValueError -- that is corrupted data, not a failed login.
        """
        try:
            return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
        except ValueError as exc:
            raise ValueError("Stored password hash is malformed") from exc

    def burn(self, plain: str) -> None:
        """Spend one verification's worth of work against the dummy hash.

        Called when the account does not exist so response time does not
        reveal whether an email is registered [C1].
        """
        self.verify(plain, self._dummy_hash)
