"""
auth/store.py -- Credential store: SQLAlchemy Core persistence for users.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route and engine code never touches SQL directly.

Email uniqueness is enforced by the UNIQUE(email) constraint. Callers must
pass normalized (lowercase, trimmed) emails; the store does not normalize.
create_user() lets IntegrityError propagate so the engine can turn a
check-then-insert race into EmailTaken.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.engine import Connection, Engine

from auth.models import User
from auth.schema import to_iso, transaction, users, utcnow


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore(create_store_engine("sqlite:///rolegate.db"))
        uid = store.create_user(User(email="a@ex.com", password_hash=hash_password("secret12")))
        user = store.get_by_email("a@ex.com")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_user(self, user: User, conn: Connection | None = None) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        When conn is given the insert joins the caller's transaction.
        """
        with transaction(self.engine, conn) as c:
            result = c.execute(
                users.insert().values(
                    email=user.email,
                    password_hash=user.password_hash,
                    name=user.name,
                    is_active=1 if user.is_active else 0,
                    created_at=to_iso(utcnow()),
                )
            )
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by normalized email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.email == email).limit(1)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def email_exists(self, email: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(users.c.id).where(users.c.email == email).limit(1)).fetchone()
        return row is not None

    def set_active(self, user_id: int, active: bool) -> bool:
        """Flip the active flag. Returns True if a row was updated."""
        with self.engine.begin() as conn:
            result = conn.execute(users.update().where(users.c.id == user_id).values(is_active=1 if active else 0))
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        name=row.name,
        is_active=bool(row.is_active),
        created_at=row.created_at,
    )
