"""
api/routes/v1/auth.py -- Authentication, session and activity REST endpoints.

Routes:
  POST   /api/v1/auth/register             -- create account; 201 with tokens and session token
  POST   /api/v1/auth/login                -- password login; tokens, session token, suspicious flag
  POST   /api/v1/auth/verify-email         -- consume a 6-digit email code
  POST   /api/v1/auth/resend-verification  -- issue a fresh email code
  POST   /api/v1/auth/forgot-password      -- mail a reset link (always 200)
  POST   /api/v1/auth/reset-password       -- set a new password with a reset token
  POST   /api/v1/auth/refresh-token        -- rotate the refresh token, new access token
  POST   /api/v1/auth/logout               -- clear refresh token, end current session (requires auth)
  GET    /api/v1/auth/me                   -- current user (requires auth)
  GET    /api/v1/auth/sessions             -- own active sessions (requires auth)
  GET    /api/v1/auth/sessions/current     -- check an X-Session-Token
  DELETE /api/v1/auth/sessions/{id}        -- revoke one own session (requires auth, ownership checked)
  GET    /api/v1/auth/activity             -- own recent activity (requires auth)

Security:
  [H2] register, login, verify, resend, forgot and reset are rate-limited per IP (429).
  [C1] AuthService.login() goes through TokenIssuer.authenticate(), which
       equalizes timing -- never look users up and compare hashes inline.
  [M2] Blocked addresses get a generic 403 before any credential check.
  [M5] Cache-Control: no-store on every response carrying credentials.
  Forgot-password answers identically whether or not the email exists.
  IDOR guard: DELETE /sessions/{id} only touches sessions owned by the caller.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit, password_reset_limit, register_limit, verification_limit
from api.models import (
    ActivityOut,
    EmailRequest,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    SessionOut,
    TokenOut,
    UserOut,
    VerifyEmailRequest,
    success_response,
)
from auth.dependencies import get_auth, get_current_user, get_request_context
from auth.models import RequestContext, User
from auth.service import AuthResult, AuthService

# Auth policy:
# - register, login, verify-email, resend-verification, forgot-password,
#   reset-password, refresh-token:   public (refresh token is the credential)
# - sessions/current:                public (X-Session-Token is the credential)
# - logout, me, sessions, sessions/{id}, activity: requires auth (get_auth / get_current_user)
router = APIRouter()


def _service(request: Request) -> AuthService:
    return request.app.state.auth


def _auth_payload(result: AuthResult) -> dict:
    return {
        "user": UserOut.from_user(result.user).model_dump(),
        "tokens": TokenOut.from_pair(result.tokens).model_dump(),
        "session": {
            "id": result.session.id,
            "token": result.session_token,
            "expires_at": result.session.expires_at.isoformat(),
        },
    }


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(register_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", status_code=201)
def register(
    request: Request, body: RegisterRequest, context: RequestContext = Depends(get_request_context)
) -> JSONResponse:
    """Create an unverified account and open its first session.

    The verification code goes out by email; the response never contains it.
    """
    result = _service(request).register(body.email, body.password, context, name=body.name, phone=body.phone)
    return success_response(
        _auth_payload(result),
        message="Registration successful. Please verify your email.",
        status_code=201,
    )


@limiter.limit(login_limit)  # [H2]
@router.post("/auth/login")
def login(request: Request, body: LoginRequest, context: RequestContext = Depends(get_request_context)) -> JSONResponse:
    """Authenticate with email and password.

    Wrong email and wrong password produce the same 401 so the response does
    not reveal which accounts exist. suspicious=true means the login came
    from an unknown device or an unusual location; it is informational.
    """
    result = _service(request).login(body.email, body.password, context)
    payload = _auth_payload(result)
    payload["suspicious"] = result.suspicious
    return success_response(payload, message="Login successful.")


@limiter.limit(verification_limit)  # [H2]
@router.post("/auth/verify-email")
def verify_email(
    request: Request, body: VerifyEmailRequest, context: RequestContext = Depends(get_request_context)
) -> JSONResponse:
    user = _service(request).verify_email(body.email, body.code, context)
    return success_response({"user": UserOut.from_user(user).model_dump()}, message="Email verified successfully.")


@limiter.limit(verification_limit)  # [H2]
@router.post("/auth/resend-verification")
def resend_verification(
    request: Request, body: EmailRequest, context: RequestContext = Depends(get_request_context)
) -> JSONResponse:
    _service(request).resend_verification(body.email, context)
    return success_response(message="Verification code sent.")


@limiter.limit(password_reset_limit)  # [H2]
@router.post("/auth/forgot-password")
def forgot_password(
    request: Request, body: EmailRequest, context: RequestContext = Depends(get_request_context)
) -> JSONResponse:
    """Always 200 with the same message -- never reveals whether the email is registered."""
    _service(request).forgot_password(body.email, context)
    return success_response(message="If an account exists for that email, a password reset link has been sent.")


@limiter.limit(password_reset_limit)  # [H2]
@router.post("/auth/reset-password")
def reset_password(
    request: Request, body: ResetPasswordRequest, context: RequestContext = Depends(get_request_context)
) -> JSONResponse:
    _service(request).reset_password(body.token, body.password, context)
    return success_response(message="Password reset successfully. Please log in again.")


@router.post("/auth/refresh-token")
def refresh_token(
    request: Request, body: RefreshRequest, context: RequestContext = Depends(get_request_context)
) -> JSONResponse:
    """Exchange a refresh token for a new pair. The presented token stops working."""
    pair = _service(request).refresh(body.refresh_token, context)
    return success_response({"tokens": TokenOut.from_pair(pair).model_dump()}, message="Token refreshed.")


@router.get("/auth/sessions/current")
def current_session(request: Request, x_session_token: str = Header(default="")) -> JSONResponse:
    """Validate a session token. Expired sessions are deactivated on this lookup."""
    session = _service(request).current_session(x_session_token)
    return success_response({"session": SessionOut.from_session(session).model_dump()})


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout")
def logout(
    request: Request,
    auth: tuple[User, dict] = Depends(get_auth),
    context: RequestContext = Depends(get_request_context),
) -> JSONResponse:
    """Clear the refresh token and end the session this access token belongs to.

    The access token itself stays valid until it expires.
    """
    user, claims = auth
    _service(request).logout(user.id, claims.get("sid"), context)
    return success_response(message="Logged out successfully.")


@router.get("/auth/me")
def me(current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Return the currently authenticated user."""
    return success_response({"user": UserOut.from_user(current_user).model_dump()})


@router.get("/auth/sessions")
def list_sessions(request: Request, auth: tuple[User, dict] = Depends(get_auth)) -> JSONResponse:
    user, claims = auth
    sessions = _service(request).list_sessions(user.id)
    return success_response(
        {"sessions": [SessionOut.from_session(s, current_id=claims.get("sid")).model_dump() for s in sessions]}
    )


@router.delete("/auth/sessions/{session_id}")
def revoke_session(
    request: Request,
    session_id: int,
    current_user: User = Depends(get_current_user),
    context: RequestContext = Depends(get_request_context),
) -> JSONResponse:
    _service(request).revoke_session(current_user.id, session_id, context)
    return success_response(message="Session revoked.")


@router.get("/auth/activity")
def list_activity(
    request: Request,
    limit: int = Query(default=50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    entries = _service(request).list_activity(current_user.id, limit)
    return success_response({"activity": [ActivityOut.from_activity(a).model_dump() for a in entries]})
