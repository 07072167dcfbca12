"""
api/limiter.py -- Shared slowapi rate limiter instance and per-route limits.

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/auth.py (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

This per-route throttle is a coarse request-rate cap that answers 429. It is
separate from auth.guard.BruteForceGuard, which counts failed logins and
blocks addresses with 403.

The limit strings come from Settings. slowapi calls zero-argument callables
at request time, so the values are read after the environment is loaded.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_limit() -> str:
    return get_settings().login_rate_limit


def register_limit() -> str:
    return get_settings().register_rate_limit


def verification_limit() -> str:
    return get_settings().verification_rate_limit


def password_reset_limit() -> str:
    return get_settings().password_reset_rate_limit
