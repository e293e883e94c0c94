"""
auth/service.py -- Auth orchestrator: login, registration, verification, reset, refresh, logout.

AuthService is the only entry point the HTTP layer calls. It composes the
components below and is the single place where component outcomes become
AuthError subclasses (and from there HTTP statuses, see api/main.py):

    UserStore             -- user records (auth/store.py)
    PasswordHasher        -- bcrypt policy (auth/passwords.py)
    TokenIssuer           -- access tokens + refresh sessions (auth/tokens.py)
    VerificationRegistry  -- single-use email/reset tokens (auth/verification.py)
    Mailer                -- link delivery (auth/mailer.py)

The service holds configuration only, no per-request state, so one instance
serves every worker thread.

Account lifecycle:
    unregistered -> pending verification (verified=False) -> active
    active -> locked (temporary, after repeated bad passwords) -> active
    deactivated (is_active=False) is terminal.

Login never says why it failed. The internal reason (unknown_email,
unverified, inactive, locked, bad_password) goes to the log only.
"""

from __future__ import annotations

import functools
import logging
import time
from typing import NoReturn

from auth.errors import (
    AuthenticationError,
    ConflictError,
    DuplicateRecordError,
    InvalidCredentials,
    InvalidToken,
    ServiceUnavailableError,
    TransientStoreError,
)
from auth.mailer import LogMailer, Mailer
from auth.models import TokenPair, TokenPurpose, User
from auth.passwords import PasswordHasher
from auth.store import UserStore, normalize_email
from auth.tokens import TokenIssuer
from auth.verification import VerificationRegistry

logger = logging.getLogger("bennu.auth")


def _store_guard(method):
    """Surface backing-store outages as 503 instead of an unhandled 500."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except TransientStoreError as exc:
            logger.error("%s: backing store unavailable: %s", method.__name__, exc)
            raise ServiceUnavailableError() from exc

    return wrapper


class AuthService:
    def __init__(
        self,
        users: UserStore,
        hasher: PasswordHasher,
        tokens: TokenIssuer,
        verifications: VerificationRegistry,
        mailer: Mailer,
        *,
        email_verify_ttl: int = 24 * 3600,
        password_reset_ttl: int = 3600,
        max_failed_logins: int = 5,
        lockout_seconds: int = 900,
        frontend_url: str = "http://localhost:3000",
    ) -> None:
        self.users = users
        self.hasher = hasher
        self.tokens = tokens
        self.verifications = verifications
        self.mailer = mailer
        self.email_verify_ttl = email_verify_ttl
        self.password_reset_ttl = password_reset_ttl
        self.max_failed_logins = max_failed_logins
        self.lockout_seconds = lockout_seconds
        self.frontend_url = frontend_url.rstrip("/")

    # ------------------------------------------------------------------
    # Registration and email verification
    # ------------------------------------------------------------------

    @_store_guard
    def register(
        self,
        email: str,
        password: str,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> str:
        """Create an unverified account and mail its verification link. Returns the user id."""
        hashed = self.hasher.hash(password)
        try:
            user_id = self.users.create_user(
                User(email=email, hashed_password=hashed, first_name=first_name, last_name=last_name)
            )
        except DuplicateRecordError as exc:
            logger.info("Registration rejected: email already in use")
            raise ConflictError() from exc
        logger.info("Registered user %s (pending verification)", user_id)
        self._send_verification(user_id, normalize_email(email))
        return user_id

    @_store_guard
    def verify_email(self, token: str) -> str:
        user_id = self.verifications.redeem(token, TokenPurpose.email_verify)
        if user_id is None or not self.users.mark_verified(user_id):
            logger.info("Email verification rejected: token invalid, expired or used")
            raise InvalidToken()
        logger.info("User %s verified email", user_id)
        return user_id

    @_store_guard
    def resend_verification(self, email: str) -> None:
        """Send a new verification link. Silent for unknown or already-verified emails."""
        user = self.users.get_by_email(email)
        if user is None or user.verified or not user.is_active:
            return
        self._send_verification(user.id, user.email)

    def _send_verification(self, user_id: str, email: str) -> None:
        self.verifications.revoke_pending(user_id, TokenPurpose.email_verify)
        token = self.verifications.issue(user_id, TokenPurpose.email_verify, self.email_verify_ttl)
        self._deliver(
            email,
            "Confirm your email address",
            f"Confirm your email address by opening this link:\n\n"
            f"{self.frontend_url}/verify/email?token={token}\n\n"
            f"The link expires in {self.email_verify_ttl // 3600} hour(s).",
        )

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    @_store_guard
    def login(self, email: str, password: str) -> TokenPair:
        """Check credentials and open a new session family.

        Always runs exactly one bcrypt check, whatever the outcome, so response
        time does not reveal whether the email exists.
        """
        now = int(time.time())
        user = self.users.get_by_email(email)
        if user is None:
            self.hasher.verify_dummy(password)
            self._reject_login("unknown_email", None)
        if user.is_locked(now):
            self.hasher.verify_dummy(password)
            self._reject_login("locked", user.id)
        if not self.hasher.verify(password, user.hashed_password):
            locked = self.users.record_login_failure(
                user.id,
                max_attempts=self.max_failed_logins,
                lockout_seconds=self.lockout_seconds,
                now=now,
            )
            self._reject_login("bad_password_now_locked" if locked else "bad_password", user.id)
        if not user.verified:
            self._reject_login("unverified", user.id)
        if not user.is_active:
            self._reject_login("inactive", user.id)

        self.users.record_login_success(user.id)
        refresh = self.tokens.issue_session(user.id)
        access = self.tokens.issue_access_token(user.id)
        logger.info("User %s logged in", user.id)
        return TokenPair(access=access, refresh=refresh)

    @staticmethod
    def _reject_login(reason: str, user_id: str | None) -> NoReturn:
        logger.info("Login failed (%s) for user %s", reason, user_id or "<unknown>")
        raise InvalidCredentials()

    # ------------------------------------------------------------------
    # Password reset and change
    # ------------------------------------------------------------------

    @_store_guard
    def request_password_reset(self, email: str) -> None:
        """Mail a reset link if the account exists. Behaves identically when it does not."""
        user = self.users.get_by_email(email)
        if user is None or not user.is_active:
            logger.info("Password reset requested for unknown or inactive email")
            return
        self.verifications.revoke_pending(user.id, TokenPurpose.password_reset)
        token = self.verifications.issue(user.id, TokenPurpose.password_reset, self.password_reset_ttl)
        self._deliver(
            user.email,
            "Reset your password",
            f"Choose a new password by opening this link:\n\n"
            f"{self.frontend_url}/reset-password?token={token}\n\n"
            f"If you did not ask for a reset, ignore this message.",
        )
        logger.info("Password reset issued for user %s", user.id)

    @_store_guard
    def reset_password(self, token: str, new_password: str) -> str:
        """Redeem a reset token, set the new password and revoke every session."""
        # Reject dead tokens before paying for a hash. Hash before redeeming so a
        # hashing failure does not burn the token; redeem stays the atomic step.
        if not self.verifications.is_pending(token, TokenPurpose.password_reset):
            logger.info("Password reset rejected: token invalid, expired or used")
            raise InvalidToken()
        hashed = self.hasher.hash(new_password)
        user_id = self.verifications.redeem(token, TokenPurpose.password_reset)
        if user_id is None or not self.users.set_password(user_id, hashed):
            logger.info("Password reset rejected: token invalid, expired or used")
            raise InvalidToken()
        revoked = self.tokens.revoke_all_sessions(user_id)
        logger.info("Password reset for user %s; revoked %d session(s)", user_id, revoked)
        return user_id

    @_store_guard
    def change_password(self, user_id: str, current_password: str, new_password: str) -> TokenPair:
        """Authenticated password change. Revokes all sessions and opens a fresh one."""
        user = self.users.get_by_id(user_id)
        if user is None or not user.is_active:
            raise AuthenticationError()
        if not self.hasher.verify(current_password, user.hashed_password):
            logger.info("Password change rejected for user %s: wrong current password", user_id)
            raise InvalidCredentials("Current password is incorrect.", status_code=401)
        self.users.set_password(user_id, self.hasher.hash(new_password))
        revoked = self.tokens.revoke_all_sessions(user_id)
        logger.info("Password changed for user %s; revoked %d session(s)", user_id, revoked)
        refresh = self.tokens.issue_session(user_id)
        access = self.tokens.issue_access_token(user_id)
        return TokenPair(access=access, refresh=refresh)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @_store_guard
    def refresh(self, refresh_token: str | None) -> TokenPair:
        """Rotate a refresh token into a new access + refresh pair."""
        pair = self.tokens.rotate_session(refresh_token)
        if pair is None:
            raise AuthenticationError("Invalid or expired refresh token.")
        user = self.users.get_by_id(pair.refresh.user_id)
        if user is None or not user.is_active or not user.verified:
            self.tokens.revoke_session(pair.refresh.token)
            logger.info("Refresh rejected for user %s: account no longer usable", pair.refresh.user_id)
            raise AuthenticationError("Invalid or expired refresh token.")
        return pair

    @_store_guard
    def logout(self, refresh_token: str | None) -> None:
        self.tokens.revoke_session(refresh_token)

    @_store_guard
    def authenticate(self, access_token: str | None) -> User:
        """Resolve a bearer access token to an active user."""
        user_id = self.tokens.verify_access_token(access_token or "")
        if user_id is None:
            raise AuthenticationError()
        user = self.users.get_by_id(user_id)
        if user is None or not user.is_active:
            raise AuthenticationError()
        return user

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _deliver(self, to: str, subject: str, body: str) -> None:
        # The token is already stored; a failed send is recoverable through
        # the resend / new reset request endpoints.
        try:
            self.mailer.send(to, subject, body)
        except Exception:
            logger.exception("Mail delivery failed: %s", subject)


def build_auth_service(settings, db, mailer: Mailer | None = None) -> AuthService:
    """Wire every auth component from Settings and a Database."""
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds, max_concurrency=settings.max_concurrent_hashes)
    tokens = TokenIssuer(
        db,
        secret_key=settings.secret_key,
        access_ttl=settings.access_token_expire_seconds,
        refresh_ttl=settings.refresh_token_expire_seconds,
    )
    return AuthService(
        users=UserStore(db),
        hasher=hasher,
        tokens=tokens,
        verifications=VerificationRegistry(db, secret_key=settings.secret_key),
        mailer=mailer or LogMailer(),
        email_verify_ttl=settings.email_verify_token_expire_seconds,
        password_reset_ttl=settings.password_reset_token_expire_seconds,
        max_failed_logins=settings.login_max_failed_attempts,
        lockout_seconds=settings.login_lockout_seconds,
        frontend_url=settings.frontend_url,
    )
