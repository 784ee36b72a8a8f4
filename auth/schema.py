"""
auth/schema.py -- SQLAlchemy Core schema and engine factory for the auth store.

All three repositories (UserStore, SessionStore, AccessStore) share one Engine
built here and the table objects declared here. Route and engine code never
touches SQL directly.

Tables:
  users             -- credentials and profile
  user_sessions     -- hashed login tokens with expiry and last-seen tracking
  roles             -- static reference data (role_key)
  permissions       -- static reference data (perm_key)
  user_roles        -- (user_id, role_id) assignments, no duplicates
  role_permissions  -- (role_id, perm_id) grants, no duplicates

Security:
  All queries use bound parameters. No f-strings in SQL.

Timestamps are stored as ISO 8601 UTC strings with fixed microsecond
precision, so lexical comparison in SQL (expires_at > :now) matches
chronological order.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    LargeBinary,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Connection, Engine

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # lowercase-normalized
    Column("password_hash", String(255), nullable=False),
    Column("name", String(255)),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
)

user_sessions = Table(
    "user_sessions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("session_token_hash", String(64), nullable=False, unique=True),  # SHA-256 hex
    Column("expires_at", String(32), nullable=False, index=True),
    Column("last_seen_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("ip", LargeBinary(16)),  # packed v4/v6, NULL when unknown
    Column("user_agent", String(255), nullable=False, server_default=""),
)

roles = Table(
    "roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("role_key", String(64), nullable=False, unique=True),
)

permissions = Table(
    "permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("perm_key", String(64), nullable=False, unique=True),
)

user_roles = Table(
    "user_roles",
    metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False),
    UniqueConstraint("user_id", "role_id", name="uq_user_roles"),
)

role_permissions = Table(
    "role_permissions",
    metadata,
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False),
    Column("perm_id", Integer, ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False),
    UniqueConstraint("role_id", "perm_id", name="uq_role_permissions"),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign keys on every new SQLite connection.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_store_engine(db_url: str) -> Engine:
    """Create the shared Engine and make sure every table exists."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _configure_sqlite)
    metadata.create_all(engine)
    return engine


@contextmanager
def transaction(engine: Engine, conn: Connection | None = None) -> Iterator[Connection]:
    """Yield a connection inside a transaction.

    When the caller already holds a connection (an enclosing unit of work such
    as registration), reuse it and leave commit/rollback to the caller.
    Otherwise open engine.begin(), which commits on exit and rolls back on
    any exception.
    """
    if conn is not None:
        yield conn
        return
    with engine.begin() as own:
        yield own


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")
