"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; stores, the engine and routes do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class User:
    """A registered identity.

    email is always stored lowercase and trimmed -- callers normalize through
    auth.tokens.normalize_email() before any lookup or insert, which is what
    makes the UNIQUE(email) constraint case-insensitive in practice.

    password_hash is a bcrypt hash and is never returned to API clients.
    """

    email: str
    password_hash: str
    id: int | None = None
    name: str | None = None
    is_active: bool = True
    created_at: str | None = None


@dataclass
class SessionRecord:
    """A server-side login session row.

    Only the SHA-256 hex digest of the session token is stored. The raw token
    lives in the signed browser-session cookie and nowhere else.
    """

    user_id: int
    token_hash: str
    expires_at: str
    last_seen_at: str
    id: int | None = None
    created_at: str | None = None
    ip: bytes | None = None  # packed IPv4 (4 bytes) or IPv6 (16 bytes)
    user_agent: str = ""


@dataclass
class SessionUser:
    """Result of a successful session lookup: the session joined with its owner."""

    user_id: int
    email: str
    name: str | None
    is_active: bool
    expires_at: str


@dataclass
class CurrentUser:
    """Snapshot of the authenticated user for one request.

    roles and permissions are resolved fresh from the join tables on every
    current_user() call and never persisted. has_role()/has_permission() in
    auth.access operate on these lists without touching the store.
    """

    id: int
    email: str
    name: str | None = None
    roles: list[str] = field(default_factory=list)
    permissions: list[str] = field(default_factory=list)


@dataclass
class UserAccess:
    """Admin listing row: a user with its resolved roles and permissions."""

    id: int
    email: str
    name: str | None
    is_active: bool
    roles: list[str] = field(default_factory=list)
    permissions: list[str] = field(default_factory=list)


@dataclass
class Registration:
    """Outcome of a successful registration.

    skipped_roles lists default role keys that could not be granted because
    the role does not exist. Registration still succeeds in that case.
    """

    user_id: int
    skipped_roles: list[str] = field(default_factory=list)


@dataclass
class RoleChange:
    """Outcome of a full role replacement for one user."""

    user_id: int
    assigned: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
