"""
auth/engine.py -- Login, registration, logout and current-user resolution.

AuthEngine composes the three stores and the browser-session context:

  Anonymous --login/register--> Authenticated --logout/expiry--> Anonymous

Every public method takes the SessionContext explicitly. The engine keeps no
per-request state of its own, so one instance serves all requests.

Security:
  [C1] login() always runs bcrypt, against a dummy hash when the email is
       unknown, and collapses unknown email / inactive account / wrong
       password into a single False. Callers must not add detail.
  Raw session tokens only ever exist in the SessionContext and the return
  value of SessionStore.create(). They are never logged.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.access import AccessStore
from auth.context import SessionContext
from auth.errors import EmailTaken, InvalidEmail, WeakPassword
from auth.models import CurrentUser, Registration, User
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.tokens import (
    burn_password_check,
    hash_password,
    hash_session_token,
    is_strong_enough,
    is_valid_email,
    normalize_email,
    normalize_name,
    verify_password,
)

logger = logging.getLogger("rolegate.auth")


class AuthEngine:
    def __init__(
        self,
        users: UserStore,
        sessions: SessionStore,
        access: AccessStore,
        session_days: int = 7,
        default_role_key: str = "user",
    ) -> None:
        self.users = users
        self.sessions = sessions
        self.access = access
        self.session_days = session_days
        self.default_role_key = default_role_key

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, ctx: SessionContext, email: str, password: str) -> bool:
        """Verify credentials and open a new session. False on any failure."""
        user = self.users.get_by_email(normalize_email(email))
        if user is None:
            burn_password_check(password)  # [C1]
            logger.info("Login failed")
            return False
        if not verify_password(password, user.password_hash) or not user.is_active:
            logger.info("Login failed")
            return False

        token = self.sessions.create(user.id, self.session_days, ctx.ip, ctx.user_agent)
        ctx.sign_in(user.id, token)
        logger.info("Login succeeded for user_id=%d", user.id)
        return True

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, ctx: SessionContext, email: str, password: str, name: str | None = None) -> Registration:
        """Create an account, grant the default role and sign the browser in.

        Raises InvalidEmail, WeakPassword or EmailTaken. A concurrent
        registration that wins the race between the existence check and the
        insert surfaces as IntegrityError on UNIQUE(email) and is reported as
        EmailTaken as well.

        User insert, role grant and session insert share one transaction. A
        default role that does not exist is skipped and reported in
        Registration.skipped_roles rather than failing the registration.
        """
        email = normalize_email(email)
        name = normalize_name(name)
        if not is_valid_email(email):
            raise InvalidEmail()
        if not is_strong_enough(password):
            raise WeakPassword()
        if self.users.email_exists(email):
            raise EmailTaken()

        new_user = User(email=email, password_hash=hash_password(password), name=name)
        skipped: list[str] = []
        with self.users.engine.begin() as conn:
            try:
                user_id = self.users.create_user(new_user, conn)
            except IntegrityError as exc:
                logger.info("Registration lost a uniqueness race")
                raise EmailTaken() from exc

            if self.default_role_key and not self.access.assign_role(user_id, self.default_role_key, conn):
                logger.warning("Default role %r does not exist; skipped for user_id=%d", self.default_role_key, user_id)
                skipped.append(self.default_role_key)

            token = self.sessions.create(user_id, self.session_days, ctx.ip, ctx.user_agent, conn=conn)

        ctx.sign_in(user_id, token)
        logger.info("Registered user_id=%d", user_id)
        return Registration(user_id=user_id, skipped_roles=skipped)

    # ------------------------------------------------------------------
    # Current user
    # ------------------------------------------------------------------

    def current_user(self, ctx: SessionContext) -> CurrentUser | None:
        """Resolve the browser session to a user snapshot, or None.

        Safe to call on every request: missing, malformed, expired or revoked
        state all yield None without raising. The only write is the
        best-effort last_seen_at touch.
        """
        creds = ctx.credentials()
        if creds is None:
            return None
        user_id, raw_token = creds
        token_hash = hash_session_token(raw_token)

        found = self.sessions.validate(user_id, token_hash)
        if found is None or not found.is_active:
            return None

        try:
            self.sessions.touch(user_id, token_hash)
        except SQLAlchemyError:
            logger.warning("Could not update last_seen_at for user_id=%d", user_id, exc_info=True)

        return CurrentUser(
            id=found.user_id,
            email=found.email,
            name=found.name,
            roles=self.access.roles_of(user_id),
            permissions=self.access.permissions_of(user_id),
        )

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self, ctx: SessionContext) -> bool:
        """Revoke the current session (if any) and clear the browser session.

        Returns True if a session row was deleted. A missing row (already
        expired, revoked elsewhere, or never logged in) is not an error, and
        the browser-session state is cleared regardless.
        """
        revoked = False
        creds = ctx.credentials()
        if creds is not None:
            user_id, raw_token = creds
            revoked = self.sessions.revoke(user_id, hash_session_token(raw_token))
            logger.info("Logout for user_id=%d (session_revoked=%s)", user_id, revoked)
        ctx.clear()
        return revoked
