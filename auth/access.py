"""
auth/access.py -- Role/permission resolution and role assignment.

Permissions are strictly role-derived: a user's effective permissions are the
distinct union of the permissions granted to the roles it holds, computed by
join on every call. Nothing here caches, so a replace_roles() is visible to the
very next roles_of()/permissions_of().

has_role()/has_permission() are the in-memory checks used by request gates;
they read the lists already resolved onto a CurrentUser and never query.

Role/permission keys are static reference data. seed() exists for the
management CLI and tests; the HTTP surface never creates roles.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.engine import Connection, Engine

from auth.errors import ValidationError
from auth.models import CurrentUser, RoleChange, UserAccess
from auth.schema import permissions, role_permissions, roles, transaction, user_roles, users

logger = logging.getLogger("rolegate.access")

# Reference data the management CLI seeds by default.
DEFAULT_ROLES: tuple[str, ...] = ("admin", "user")
DEFAULT_PERMISSIONS: tuple[str, ...] = ("manage_users",)
DEFAULT_GRANTS: dict[str, tuple[str, ...]] = {"admin": ("manage_users",)}


# ---------------------------------------------------------------------------
# In-memory gates
# ---------------------------------------------------------------------------


def has_role(user: CurrentUser, role_key: str) -> bool:
    return role_key in user.roles


def has_permission(user: CurrentUser, perm_key: str) -> bool:
    return perm_key in user.permissions


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccessStore:
    """Queries and mutations over roles, permissions and their join tables."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def roles_of(self, user_id: int, conn: Connection | None = None) -> list[str]:
        """Distinct role keys held by the user, sorted."""
        stmt = (
            select(roles.c.role_key)
            .select_from(user_roles.join(roles, roles.c.id == user_roles.c.role_id))
            .where(user_roles.c.user_id == user_id)
            .distinct()
            .order_by(roles.c.role_key)
        )
        with self._reader(conn) as c:
            return [row.role_key for row in c.execute(stmt)]

    def permissions_of(self, user_id: int, conn: Connection | None = None) -> list[str]:
        """Distinct permission keys granted through any of the user's roles, sorted."""
        stmt = (
            select(permissions.c.perm_key)
            .select_from(
                user_roles.join(role_permissions, role_permissions.c.role_id == user_roles.c.role_id).join(
                    permissions, permissions.c.id == role_permissions.c.perm_id
                )
            )
            .where(user_roles.c.user_id == user_id)
            .distinct()
            .order_by(permissions.c.perm_key)
        )
        with self._reader(conn) as c:
            return [row.perm_key for row in c.execute(stmt)]

    def permissions_of_role(self, role_key: str) -> list[str]:
        stmt = (
            select(permissions.c.perm_key)
            .select_from(
                roles.join(role_permissions, role_permissions.c.role_id == roles.c.id).join(
                    permissions, permissions.c.id == role_permissions.c.perm_id
                )
            )
            .where(roles.c.role_key == role_key)
            .order_by(permissions.c.perm_key)
        )
        with self.engine.connect() as conn:
            return [row.perm_key for row in conn.execute(stmt)]

    def role_exists(self, role_key: str) -> bool:
        return self._role_id(role_key) is not None

    def list_roles(self) -> list[str]:
        with self.engine.connect() as conn:
            return [row.role_key for row in conn.execute(select(roles.c.role_key).order_by(roles.c.role_key))]

    def list_users_with_access(self, limit: int = 200) -> list[UserAccess]:
        """Admin listing: users newest first, each with resolved roles/permissions."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(users.c.id, users.c.email, users.c.name, users.c.is_active)
                .order_by(users.c.id.desc())
                .limit(limit)
            ).fetchall()
            return [
                UserAccess(
                    id=row.id,
                    email=row.email,
                    name=row.name,
                    is_active=bool(row.is_active),
                    roles=self.roles_of(row.id, conn),
                    permissions=self.permissions_of(row.id, conn),
                )
                for row in rows
            ]

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def assign_role(self, user_id: int, role_key: str, conn: Connection | None = None) -> bool:
        """Grant one role. Returns False if the role key does not exist.

        Idempotent: granting an already-held role is a successful no-op.
        """
        with transaction(self.engine, conn) as c:
            role_id = self._role_id(role_key, c)
            if role_id is None:
                return False
            held = c.execute(
                select(user_roles.c.role_id).where(
                    (user_roles.c.user_id == user_id) & (user_roles.c.role_id == role_id)
                )
            ).fetchone()
            if held is None:
                c.execute(user_roles.insert().values(user_id=user_id, role_id=role_id))
        return True

    def replace_roles(self, target_user_id, role_keys) -> RoleChange:
        """Replace every role of target_user_id with the recognized keys in role_keys.

        The caller must already hold manage_users; that gate lives at the
        request boundary. Unknown keys are skipped and reported, not rejected.
        Delete and insert run in one transaction, so no reader ever observes
        the user with zero roles mid-update.

        Raises ValidationError for a non-positive / non-int user id, a user id
        that does not exist, or a role_keys value that is not a list of strings.
        """
        if isinstance(target_user_id, bool) or not isinstance(target_user_id, int) or target_user_id <= 0:
            raise ValidationError("Invalid userId", field="userId")
        if not isinstance(role_keys, list) or not all(isinstance(k, str) for k in role_keys):
            raise ValidationError("roles must be an array of strings", field="roles")

        wanted = _dedupe(k.strip() for k in role_keys)
        change = RoleChange(user_id=target_user_id)
        with self.engine.begin() as conn:
            exists = conn.execute(select(users.c.id).where(users.c.id == target_user_id)).fetchone()
            if exists is None:
                raise ValidationError("Unknown userId", field="userId")

            known: dict[str, int] = {}
            if wanted:
                known = dict(
                    conn.execute(select(roles.c.role_key, roles.c.id).where(roles.c.role_key.in_(wanted))).all()
                )

            conn.execute(user_roles.delete().where(user_roles.c.user_id == target_user_id))
            for key in wanted:
                role_id = known.get(key)
                if role_id is None:
                    change.skipped.append(key)
                    continue
                conn.execute(user_roles.insert().values(user_id=target_user_id, role_id=role_id))
                change.assigned.append(key)

        logger.info(
            "Roles replaced for user_id=%d: assigned=%s skipped=%s",
            target_user_id,
            change.assigned,
            change.skipped,
        )
        return change

    def seed(
        self,
        role_keys: Iterable[str] = DEFAULT_ROLES,
        perm_keys: Iterable[str] = DEFAULT_PERMISSIONS,
        grants: dict[str, Iterable[str]] | None = None,
    ) -> None:
        """Idempotently create roles, permissions and role->permission grants.

        Every role and permission named in grants is created as well.
        """
        grants = DEFAULT_GRANTS if grants is None else grants
        role_set = set(role_keys) | set(grants)
        perm_set = set(perm_keys) | {p for ps in grants.values() for p in ps}
        with self.engine.begin() as conn:
            for key in sorted(role_set):
                _insert_ignore(conn, roles.insert().values(role_key=key), roles.c.role_key == key, roles)
            for key in sorted(perm_set):
                _insert_ignore(
                    conn, permissions.insert().values(perm_key=key), permissions.c.perm_key == key, permissions
                )
            role_ids = dict(conn.execute(select(roles.c.role_key, roles.c.id)).all())
            perm_ids = dict(conn.execute(select(permissions.c.perm_key, permissions.c.id)).all())
            for role_key, perm_keys_for_role in grants.items():
                for perm_key in perm_keys_for_role:
                    role_id, perm_id = role_ids[role_key], perm_ids[perm_key]
                    _insert_ignore(
                        conn,
                        role_permissions.insert().values(role_id=role_id, perm_id=perm_id),
                        (role_permissions.c.role_id == role_id) & (role_permissions.c.perm_id == perm_id),
                        role_permissions,
                    )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _reader(self, conn: Connection | None):
        return transaction(self.engine, conn) if conn is not None else self.engine.connect()

    def _role_id(self, role_key: str, conn: Connection | None = None) -> int | None:
        stmt = select(roles.c.id).where(roles.c.role_key == role_key).limit(1)
        with self._reader(conn) as c:
            row = c.execute(stmt).fetchone()
        return row.id if row is not None else None


def _dedupe(keys: Iterable[str]) -> list[str]:
    """Drop blanks and duplicates, keeping first-seen order."""
    seen: set[str] = set()
    result: list[str] = []
    for key in keys:
        if key and key not in seen:
            seen.add(key)
            result.append(key)
    return result


def _insert_ignore(conn: Connection, insert_stmt, match, table) -> None:
    """Portable INSERT-if-absent (no dialect-specific INSERT OR IGNORE)."""
    if conn.execute(select(table).where(match).limit(1)).fetchone() is None:
        conn.execute(insert_stmt)
