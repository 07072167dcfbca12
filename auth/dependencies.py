"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Protected routes authenticate with an "Authorization: Bearer <access token>"
header. The token is verified cryptographically by TokenIssuer, then the
user is loaded so deleted accounts lose access immediately even though
their token has not expired yet.

get_request_context() builds the RequestContext (address, user agent,
accept-language) that fingerprinting, geo lookup and the brute-force guard
work from. X-Forwarded-For is honoured only when Settings.trust_forwarded_for
is set; otherwise any client could choose its own address and dodge blocks.

get_auth() returns (user, claims) so routes can read the session id (sid)
the access token was issued with. get_current_user() returns just the user,
and require_admin() adds the role check.

Components live on app.state (wired in api/main.py lifespan); nothing here
reaches for a module-level singleton.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Depends/HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from auth.models import RequestContext, Role, User


def get_request_context(request: Request) -> RequestContext:
    address = request.client.host if request.client else ""
    if request.app.state.settings.trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For", "")
        if forwarded:
            address = forwarded.split(",")[0].strip()
    return RequestContext(
        address=address,
        user_agent=request.headers.get("User-Agent", ""),
        accept_language=request.headers.get("Accept-Language", ""),
    )


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def try_get_auth(request: Request) -> tuple[User, dict] | None:
    """Return (user, token claims) for a valid bearer token, None otherwise. Never raises."""
    token = _bearer_token(request)
    if not token:
        return None
    claims = request.app.state.tokens.decode_access_token(token)
    if claims is None:
        return None
    user = request.app.state.store.get_by_id(claims["user_id"])
    if user is None:
        return None
    return user, claims


def get_auth(request: Request) -> tuple[User, dict]:
    """Require authentication. Raises HTTP 401 if the request is not authenticated."""
    auth = try_get_auth(request)
    if auth is None:
        raise HTTPException(
            status_code=401,
            detail="Authentication required.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return auth


def get_current_user(auth: tuple[User, dict] = Depends(get_auth)) -> User:
    """Use as a FastAPI dependency:

        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    return auth[0]


def require_admin(user: User = Depends(get_current_user)) -> User:
    """Require admin role. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    if user.role != Role.admin.value:
        raise HTTPException(status_code=403, detail="Admin access required.")
    return user
