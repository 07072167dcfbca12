"""
auth/codes.py -- Verification codes, opaque tokens and token digests (CodeGenerator).

Everything random here comes from the secrets module (CSPRNG).

  Verification codes: 6 ASCII digits drawn uniformly from 000000-999999.
       Short-lived and rate-limited, so low entropy is acceptable.

  Opaque tokens (refresh, reset, session): secrets.token_hex / token_urlsafe
       give 256+ bits of entropy -- brute-force is computationally infeasible.

  Digests: SHA-256 hex. Opaque tokens are stored only as digests. A fast hash
       is enough because the inputs are high-entropy; bcrypt's slowness is
       only needed for low-entropy passwords.
"""

from __future__ import annotations

import hashlib
import secrets
import string

VERIFICATION_CODE_LENGTH = 6
AGENT_CODE_PREFIX = "AG"


def generate_verification_code(length: int = VERIFICATION_CODE_LENGTH) -> str:
    return "".join(secrets.choice(string.digits) for _ in range(length))


def generate_opaque_token(num_bytes: int = 32) -> str:
    """Return a random hex token with num_bytes of entropy (2x length in characters)."""
    return secrets.token_hex(num_bytes)


def generate_session_token() -> str:
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    """Return the SHA-256 hex digest used to store and look up an opaque token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_agent_code() -> str:
    """Return a candidate agent code like AG48213.

    Only 90,000 values exist, so collisions are expected as the user base
    grows. Uniqueness is enforced by the store; callers retry a bounded
    number of times (see AuthService._create_user_with_agent_code).
    """
    return f"{AGENT_CODE_PREFIX}{secrets.randbelow(90000) + 10000}"
