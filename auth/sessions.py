"""
auth/sessions.py -- Session store: server-side login sessions keyed by token hash.

A session row proves that a browser completed login or registration. The raw
token is handed back to the caller exactly once (create) and is expected to
live only in the signed browser-session cookie. Every lookup goes through the
SHA-256 hash, and every lookup filters expires_at > now -- expiry needs no
background job, purge_expired() only reclaims space.

One user may hold any number of concurrent sessions (one per device); revoke()
only ever touches the single (user_id, token_hash) row.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.engine import Connection, Engine

from auth.models import SessionRecord, SessionUser
from auth.schema import to_iso, transaction, user_sessions, users, utcnow
from auth.tokens import generate_session_token, hash_session_token, pack_ip, truncate_user_agent

logger = logging.getLogger("rolegate.auth")


class SessionStore:
    """Repository for login sessions.

    clock is injectable so tests can move time forward without sleeping.
    """

    def __init__(self, engine: Engine, clock: Callable[[], datetime] = utcnow) -> None:
        self.engine = engine
        self._clock = clock

    def _now_iso(self) -> str:
        return to_iso(self._clock())

    def create(
        self,
        user_id: int,
        ttl_days: int,
        ip: str | None = None,
        user_agent: str | None = None,
        conn: Connection | None = None,
    ) -> str:
        """Insert a session valid for ttl_days and return the RAW token.

        The raw token is never persisted and never logged.
        """
        token = generate_session_token()
        now = self._clock()
        with transaction(self.engine, conn) as c:
            c.execute(
                user_sessions.insert().values(
                    user_id=user_id,
                    session_token_hash=hash_session_token(token),
                    expires_at=to_iso(now + timedelta(days=ttl_days)),
                    last_seen_at=to_iso(now),
                    created_at=to_iso(now),
                    ip=pack_ip(ip),
                    user_agent=truncate_user_agent(user_agent),
                )
            )
        logger.info("Session created for user_id=%d (ttl=%dd)", user_id, ttl_days)
        return token

    def validate(self, user_id: int, token_hash: str) -> SessionUser | None:
        """Return the session joined with its user iff it exists and has not expired."""
        stmt = (
            select(
                users.c.id,
                users.c.email,
                users.c.name,
                users.c.is_active,
                user_sessions.c.expires_at,
            )
            .select_from(user_sessions.join(users, users.c.id == user_sessions.c.user_id))
            .where(
                (user_sessions.c.user_id == user_id)
                & (user_sessions.c.session_token_hash == token_hash)
                & (user_sessions.c.expires_at > self._now_iso())
            )
            .limit(1)
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        if row is None:
            return None
        return SessionUser(
            user_id=row.id,
            email=row.email,
            name=row.name,
            is_active=bool(row.is_active),
            expires_at=row.expires_at,
        )

    def touch(self, user_id: int, token_hash: str) -> bool:
        """Stamp last_seen_at. Token hash and expiry are left untouched."""
        with self.engine.begin() as conn:
            result = conn.execute(
                user_sessions.update()
                .where((user_sessions.c.user_id == user_id) & (user_sessions.c.session_token_hash == token_hash))
                .values(last_seen_at=self._now_iso())
            )
        return result.rowcount > 0

    def revoke(self, user_id: int, token_hash: str) -> bool:
        """Delete one session. Returns False (not an error) if nothing matched."""
        with self.engine.begin() as conn:
            result = conn.execute(
                user_sessions.delete().where(
                    (user_sessions.c.user_id == user_id) & (user_sessions.c.session_token_hash == token_hash)
                )
            )
        return result.rowcount > 0

    def revoke_all(self, user_id: int) -> int:
        """Delete every session of a user (forced logout on all devices)."""
        with self.engine.begin() as conn:
            result = conn.execute(user_sessions.delete().where(user_sessions.c.user_id == user_id))
        return result.rowcount

    def purge_expired(self) -> int:
        """Delete sessions whose expires_at is not in the future."""
        with self.engine.begin() as conn:
            result = conn.execute(user_sessions.delete().where(user_sessions.c.expires_at <= self._now_iso()))
        if result.rowcount:
            logger.info("Purged %d expired sessions", result.rowcount)
        return result.rowcount

    def list_for_user(self, user_id: int) -> list[SessionRecord]:
        """Return all session rows of a user (expired ones included), newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                user_sessions.select()
                .where(user_sessions.c.user_id == user_id)
                .order_by(user_sessions.c.id.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]


def _row_to_session(row) -> SessionRecord:
    return SessionRecord(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.session_token_hash,
        expires_at=row.expires_at,
        last_seen_at=row.last_seen_at,
        created_at=row.created_at,
        ip=row.ip,
        user_agent=row.user_agent,
    )
