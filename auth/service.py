"""
auth/service.py -- The authentication state machine (AuthService).

AuthService composes the guard, session manager, token issuer, verification
manager and notifier into the user-facing flows:

    Flow             Preconditions                          Failure modes
    register         address not blocked, email unused      Blocked, DuplicateEmail, IdentifierExhausted
    login            address not blocked, password ok,      Blocked, InvalidCredential, Unverified
                     user verified
    verify_email     code present, matching, unexpired      NotFound, AlreadyDone, InvalidCode, Expired
    forgot_password  none -- always succeeds                (never reveals whether the email exists)
    reset_password   token digest matches, unexpired        InvalidOrExpiredToken
    refresh          refresh token matches stored digest    InvalidCredential
    logout           valid access token                     none -- idempotent

Every security-relevant failure (blocked or failed login, failed
verification, failed reset, failed refresh) is appended to the activity log
before the error propagates. Failed logins also feed the brute-force guard.

Writes are individual single-row operations, not one transaction. A crash
part-way through a flow leaves committed rows behind; repeating the flow
(logging in again) is the recovery path.

Suspicious logins are informational: logged, flagged in the result, and
mailed to the user, but never blocked.

Notifications never fail a flow. A delivery failure is logged and the state
change stands.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from auth.codes import generate_agent_code
from auth.device import fingerprint
from auth.errors import (
    AlreadyDone,
    AuthError,
    Blocked,
    Conflict,
    DuplicateEmail,
    IdentifierExhausted,
    InvalidCredential,
    NotFound,
    Unverified,
)
from auth.geo import GeoResolver
from auth.guard import BruteForceGuard
from auth.models import (
    Activity,
    ActivityStatus,
    ActivityType,
    BlockedAddress,
    Location,
    RequestContext,
    Role,
    Session,
    TokenPair,
    User,
)
from auth.notifier import Notifier, SmtpNotifier
from auth.passwords import CredentialHasher
from auth.sessions import SessionManager
from auth.store import RecordStore
from auth.tokens import TokenIssuer
from auth.verification import VerificationCodeManager
from core.clock import utc_now
from core.config import Settings

logger = logging.getLogger("sentinel.auth")


@dataclass
class AuthResult:
    """What a successful register or login hands back to the route layer."""

    user: User
    tokens: TokenPair
    session: Session
    session_token: str
    suspicious: bool = False


def _describe_location(location: Location) -> str:
    parts = [p for p in (location.city, location.region, location.country) if p]
    return ", ".join(parts) if parts else "Unknown location"


class AuthService:
    """Coordinates the register/login/verify/reset/refresh/logout flows."""

    def __init__(
        self,
        store: RecordStore,
        hasher: CredentialHasher,
        guard: BruteForceGuard,
        sessions: SessionManager,
        tokens: TokenIssuer,
        verification: VerificationCodeManager,
        notifier: Notifier,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._guard = guard
        self._sessions = sessions
        self._tokens = tokens
        self._verification = verification
        self._notifier = notifier
        self._settings = settings
        self._clock = clock

    # ------------------------------------------------------------------
    # Register / login
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        context: RequestContext,
        name: str = "",
        phone: str | None = None,
    ) -> AuthResult:
        """Create an unverified account, open its first session and mail a verification code."""
        self._admit(context, ActivityType.REGISTRATION_BLOCKED)

        email = email.strip().lower()
        # Fast path only; the partial unique index is what actually decides.
        if self._store.email_in_use(email):
            raise DuplicateEmail()

        user = self._create_user_with_agent_code(
            User(email=email, password_hash=self._hasher.hash(password), name=name, phone=phone)
        )
        code = self._verification.issue_email_code(user)
        session, session_token = self._sessions.create_session(user, context, ActivityType.REGISTRATION)
        pair = self._tokens.issue(user, session.id)
        logger.info("Registered user %s (%s)", user.id, user.agent_code)

        self._notify(
            "verification",
            user,
            code=code,
            expires_minutes=self._settings.verification_code_ttl_seconds // 60,
        )
        return AuthResult(user=user, tokens=pair, session=session, session_token=session_token)

    def _create_user_with_agent_code(self, user: User) -> User:
        """Insert user with a fresh agent code, retrying a bounded number of times on collision."""
        for attempt in range(1, self._settings.agent_code_attempts + 1):
            user.agent_code = generate_agent_code()
            try:
                user.id = self._store.create_user(user)
            except IntegrityError:
                # Either the email lost a registration race or the agent code collided.
                if self._store.email_in_use(user.email):
                    raise DuplicateEmail() from None
                logger.info("Agent code collision on attempt %d, retrying", attempt)
                continue
            stored = self._store.get_by_id(user.id)
            return stored if stored is not None else user
        raise IdentifierExhausted("Could not allocate a unique agent code.")

    def login(self, email: str, password: str, context: RequestContext) -> AuthResult:
        """Authenticate, run the anomaly check and open a session.

        The block check runs before any credential work, so a blocked
        address is rejected even with the right password.
        """
        self._admit(context, ActivityType.LOGIN_BLOCKED)

        user = self._tokens.authenticate(email, password)
        if user is None:
            known = self._store.get_by_email(email)
            self._guard.record_failed_login(
                context.address,
                user_id=known.id if known else None,
                fingerprint=fingerprint(context),
                reason="invalid_credentials",
            )
            raise InvalidCredential()
        if not user.verified:
            self._guard.record_failed_login(
                context.address,
                user_id=user.id,
                fingerprint=fingerprint(context),
                reason="unverified",
            )
            raise Unverified()

        risk = self._sessions.assess_login(user.id, context)
        session, session_token = self._sessions.create_session(
            user, context, ActivityType.LOGIN, location=risk.location
        )
        pair = self._tokens.issue(user, session.id)
        now = self._clock()
        self._store.update_user(user.id, last_login=now)
        user.last_login = now

        if risk.suspicious:
            logger.warning(
                "Suspicious login for user %s (known_device=%s, suspicious_location=%s)",
                user.id,
                risk.known_device,
                risk.suspicious_location,
            )
            self._sessions.log_activity(
                ActivityType.SUSPICIOUS_LOGIN,
                ActivityStatus.SUCCESS,
                user_id=user.id,
                session_id=session.id,
                context=context,
                fingerprint=risk.fingerprint,
                location=risk.location,
                details={"known_device": risk.known_device, "suspicious_location": risk.suspicious_location},
            )
            self._notify(
                "suspicious_login",
                user,
                device=session.device.display_name,
                location=_describe_location(risk.location),
                address=context.address,
                time=now.strftime("%Y-%m-%d %H:%M UTC"),
            )

        return AuthResult(
            user=user,
            tokens=pair,
            session=session,
            session_token=session_token,
            suspicious=risk.suspicious,
        )

    def _admit(self, context: RequestContext, blocked_activity: ActivityType) -> None:
        try:
            self._guard.ensure_allowed(context.address)
        except Blocked:
            self._sessions.log_activity(
                blocked_activity,
                ActivityStatus.FAILED,
                context=context,
                fingerprint=fingerprint(context),
            )
            raise

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    def verify_email(self, email: str, code: str, context: RequestContext | None = None) -> User:
        try:
            user = self._verification.verify_email(email, code)
        except AuthError as exc:
            known = self._store.get_by_email(email)
            self._sessions.log_activity(
                ActivityType.EMAIL_VERIFICATION_FAILED,
                ActivityStatus.FAILED,
                user_id=known.id if known else None,
                context=context,
                details={"reason": exc.code},
            )
            raise
        self._sessions.log_activity(ActivityType.EMAIL_VERIFIED, ActivityStatus.SUCCESS, user_id=user.id, context=context)
        self._notify("welcome", user, login_link=f"{self._settings.frontend_base_url}/login")
        return user

    def resend_verification(self, email: str, context: RequestContext | None = None) -> bool:
        """Replace the user's code with a new one and mail it. Returns whether the mail went out."""
        user = self._store.get_by_email(email)
        if user is None:
            raise NotFound("User not found.")
        if user.verified:
            raise AlreadyDone("Email already verified.")
        code = self._verification.issue_email_code(user)
        self._sessions.log_activity(
            ActivityType.VERIFICATION_RESENT, ActivityStatus.SUCCESS, user_id=user.id, context=context
        )
        return self._notify(
            "verification",
            user,
            code=code,
            expires_minutes=self._settings.verification_code_ttl_seconds // 60,
        )

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forgot_password(self, email: str, context: RequestContext | None = None) -> None:
        """Mail a reset link if the account exists. Reports nothing either way."""
        user = self._store.get_by_email(email)
        if user is None:
            self._sessions.log_activity(
                ActivityType.PASSWORD_RESET_REQUESTED,
                ActivityStatus.FAILED,
                context=context,
                details={"reason": "unknown_email"},
            )
            return
        token = self._verification.issue_reset_token(user)
        self._sessions.log_activity(
            ActivityType.PASSWORD_RESET_REQUESTED, ActivityStatus.SUCCESS, user_id=user.id, context=context
        )
        self._notify(
            "password_reset",
            user,
            reset_link=f"{self._settings.frontend_base_url}/reset-password?token={token}",
            expires_minutes=self._settings.reset_token_ttl_seconds // 60,
        )

    def reset_password(self, token: str, new_password: str, context: RequestContext | None = None) -> User:
        try:
            user, invalidated = self._verification.reset_password(token, new_password)
        except AuthError as exc:
            self._sessions.log_activity(
                ActivityType.PASSWORD_RESET_FAILED,
                ActivityStatus.FAILED,
                context=context,
                details={"reason": exc.code},
            )
            raise
        self._sessions.log_activity(
            ActivityType.PASSWORD_RESET_COMPLETED,
            ActivityStatus.SUCCESS,
            user_id=user.id,
            context=context,
            details={"sessions_invalidated": invalidated},
        )
        self._notify("password_changed", user)
        return user

    # ------------------------------------------------------------------
    # Tokens and sessions
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str, context: RequestContext | None = None) -> TokenPair:
        try:
            user, pair = self._tokens.refresh(refresh_token)
        except InvalidCredential:
            self._sessions.log_activity(ActivityType.TOKEN_REFRESH_FAILED, ActivityStatus.FAILED, context=context)
            raise
        self._sessions.log_activity(
            ActivityType.TOKEN_REFRESHED,
            ActivityStatus.SUCCESS,
            user_id=user.id,
            session_id=user.refresh_session_id,
            context=context,
        )
        return pair

    def logout(self, user_id: int, session_id: int | None, context: RequestContext | None = None) -> None:
        """Clear the refresh token and end the session the access token was issued with.

        Safe to repeat: a second call changes nothing and raises nothing.
        """
        self._tokens.revoke(user_id)
        if session_id is not None:
            session = self._sessions.get_session(session_id)
            if session is not None and session.user_id == user_id:
                self._sessions.invalidate_session(session_id)
        self._sessions.log_activity(
            ActivityType.LOGOUT, ActivityStatus.SUCCESS, user_id=user_id, session_id=session_id, context=context
        )

    def revoke_session(self, user_id: int, session_id: int, context: RequestContext | None = None) -> bool:
        """End one of the user's own sessions. Returns False if it was already inactive."""
        session = self._sessions.get_session(session_id)
        if session is None or session.user_id != user_id:
            raise NotFound("Session not found.")
        changed = self._sessions.invalidate_session(session_id)
        user = self._store.get_by_id(user_id)
        if user is not None and user.refresh_session_id == session_id:
            self._tokens.revoke(user_id)
        self._sessions.log_activity(
            ActivityType.SESSION_REVOKED, ActivityStatus.SUCCESS, user_id=user_id, session_id=session_id, context=context
        )
        return changed

    def current_session(self, session_token: str) -> Session:
        session = self._sessions.validate_session(session_token)
        if session is None:
            raise InvalidCredential("Invalid or expired session.")
        return session

    def list_sessions(self, user_id: int) -> list[Session]:
        return self._sessions.list_active_sessions(user_id)

    def list_activity(self, user_id: int, limit: int = 50) -> list[Activity]:
        return self._store.list_activities(user_id, limit)

    def get_user(self, user_id: int) -> User:
        user = self._store.get_by_id(user_id)
        if user is None:
            raise NotFound("User not found.")
        return user

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def create_admin(self, email: str, password: str, name: str = "") -> User:
        """Create a verified admin directly. Used by the operator CLI for first-run setup."""
        email = email.strip().lower()
        if self._store.email_in_use(email):
            raise DuplicateEmail()
        now = self._clock()
        user = self._create_user_with_agent_code(
            User(
                email=email,
                password_hash=self._hasher.hash(password),
                name=name,
                role=Role.admin.value,
                verified=True,
                email_verified_at=now,
            )
        )
        logger.info("Created admin user %s", user.id)
        return user

    def list_blocked(self) -> list[BlockedAddress]:
        return self._guard.list_blocked()

    def unblock_address(self, address: str, actor_id: int | None = None) -> None:
        """Lift a block. actor_id is the acting admin, None for the operator CLI."""
        if not self._guard.unblock(address):
            raise NotFound("Address is not blocked.")
        logger.info("Address %s unblocked by %s", address, actor_id if actor_id is not None else "operator")

    def change_role(self, admin: User, user_id: int, role: Role, context: RequestContext | None = None) -> User:
        target = self.get_user(user_id)
        if target.role == Role.admin.value and role != Role.admin and self._store.count_active_admins() <= 1:
            raise Conflict("Cannot demote the last admin.")
        previous = target.role
        self._store.update_user(user_id, role=role.value)
        target.role = role.value
        self._sessions.log_activity(
            ActivityType.ROLE_CHANGED,
            ActivityStatus.SUCCESS,
            user_id=user_id,
            context=context,
            details={"from": previous, "to": role.value, "by": admin.id},
        )
        logger.info("Admin %s changed role of user %s from %s to %s", admin.id, user_id, previous, role.value)
        return target

    def delete_account(self, admin: User, user_id: int, context: RequestContext | None = None) -> None:
        """Tombstone an account and cut off every way back in."""
        target = self.get_user(user_id)
        if target.id == admin.id:
            raise Conflict("You cannot delete your own account.")
        if target.role == Role.admin.value and self._store.count_active_admins() <= 1:
            raise Conflict("Cannot delete the last admin.")
        self._store.soft_delete_user(user_id)
        self._tokens.revoke(user_id)
        self._sessions.invalidate_all_sessions_for_user(user_id)
        self._sessions.log_activity(
            ActivityType.ACCOUNT_DELETED,
            ActivityStatus.SUCCESS,
            user_id=user_id,
            context=context,
            details={"by": admin.id},
        )
        logger.info("Admin %s deleted user %s", admin.id, user_id)

    def restore_account(self, admin: User, user_id: int, context: RequestContext | None = None) -> User:
        target = self._store.get_by_id(user_id, include_deleted=True)
        if target is None or not target.is_deleted:
            raise NotFound("Deleted user not found.")
        try:
            self._store.restore_user(user_id)
        except IntegrityError:
            raise DuplicateEmail("Email already registered by another account.") from None
        self._sessions.log_activity(
            ActivityType.ACCOUNT_RESTORED,
            ActivityStatus.SUCCESS,
            user_id=user_id,
            context=context,
            details={"by": admin.id},
        )
        logger.info("Admin %s restored user %s", admin.id, user_id)
        return self.get_user(user_id)

    def revoke_all_sessions(self, admin: User, user_id: int, context: RequestContext | None = None) -> int:
        self.get_user(user_id)
        count = self._sessions.invalidate_all_sessions_for_user(user_id)
        self._tokens.revoke(user_id)
        self._sessions.log_activity(
            ActivityType.SESSION_REVOKED,
            ActivityStatus.SUCCESS,
            user_id=user_id,
            context=context,
            details={"count": count, "by": admin.id},
        )
        return count

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _notify(self, template: str, user: User, **context) -> bool:
        sent = self._notifier.send(template, user.email, {"name": user.name, **context})
        if not sent:
            logger.warning("%s notification for user %s was not delivered", template, user.id)
        return sent


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


@dataclass
class AuthComponents:
    """Every long-lived auth component, built once per process."""

    store: RecordStore
    geo: GeoResolver
    tokens: TokenIssuer
    sessions: SessionManager
    guard: BruteForceGuard
    service: AuthService

    def close(self) -> None:
        self.geo.close()
        self.store.close()


def build_auth(
    settings: Settings,
    *,
    clock: Callable[[], datetime] = utc_now,
    store: RecordStore | None = None,
    notifier: Notifier | None = None,
    geo: GeoResolver | None = None,
) -> AuthComponents:
    """Construct and wire the auth components.

    Callers pass overrides for the collaborators they want to replace (tests
    pass an in-memory store, a recording notifier, a fixed geo resolver and a
    frozen clock). Everything else is built from settings.
    """
    store = store or RecordStore(settings.database_url, clock=clock)
    geo = geo or GeoResolver(settings.geoip_database_path, settings.geoip_timeout_seconds)
    notifier = notifier or SmtpNotifier(settings)
    hasher = CredentialHasher(settings.bcrypt_rounds)
    sessions = SessionManager(store, geo, settings, clock=clock)
    guard = BruteForceGuard(store, settings, clock=clock)
    tokens = TokenIssuer(store, hasher, settings, clock=clock)
    verification = VerificationCodeManager(store, hasher, settings, clock=clock)
    service = AuthService(store, hasher, guard, sessions, tokens, verification, notifier, settings, clock=clock)
    return AuthComponents(store=store, geo=geo, tokens=tokens, sessions=sessions, guard=guard, service=service)
