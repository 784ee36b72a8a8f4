#!/usr/bin/env python3
"""
RoleGate management CLI -- reference data and account administration.

Usage:
  python main.py seed
  python main.py create-user admin@corp.io --password 's3cret-pass' --name Admin --role admin
  python main.py set-active user@corp.io --inactive
  python main.py revoke-sessions user@corp.io
  python main.py purge-sessions

All commands read DATABASE_URL (and the rest of the settings) from the
environment / .env, exactly like the API server.
"""

import argparse
import getpass
import logging
import sys

from auth.access import AccessStore
from auth.context import SessionContext
from auth.engine import AuthEngine
from auth.errors import ValidationError
from auth.schema import create_store_engine
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.tokens import normalize_email
from core.config import get_settings

logger = logging.getLogger("rolegate.cli")


def _build(db_url: str) -> tuple[UserStore, SessionStore, AccessStore]:
    engine = create_store_engine(db_url)
    return UserStore(engine), SessionStore(engine), AccessStore(engine)


def cmd_seed(args: argparse.Namespace, users: UserStore, sessions: SessionStore, access: AccessStore) -> int:
    access.seed()
    print(f"Roles: {', '.join(access.list_roles())}")
    for role in access.list_roles():
        print(f"  {role}: {', '.join(access.permissions_of_role(role)) or '-'}")
    return 0


def cmd_create_user(args: argparse.Namespace, users: UserStore, sessions: SessionStore, access: AccessStore) -> int:
    """Create an account through the registration path, then add extra roles.

    The browser session produced by registration is discarded and its
    server-side session row revoked: CLI-created accounts start logged out.
    """
    settings = get_settings()
    password = args.password or getpass.getpass("Password: ")
    engine = AuthEngine(
        users, sessions, access, session_days=settings.session_days, default_role_key=settings.default_role_key
    )
    ctx = SessionContext()
    try:
        result = engine.register(ctx, args.email, password, args.name)
    except ValidationError as exc:
        print(f"  [!] {exc.message}", file=sys.stderr)
        return 1
    engine.logout(ctx)

    for role in args.role or []:
        if not access.assign_role(result.user_id, role):
            print(f"  [!] Unknown role '{role}' skipped", file=sys.stderr)
    for role in result.skipped_roles:
        print(f"  [!] Default role '{role}' does not exist; run 'seed' first", file=sys.stderr)

    print(f"Created user {result.user_id} with roles: {', '.join(access.roles_of(result.user_id)) or '-'}")
    return 0


def cmd_set_active(args: argparse.Namespace, users: UserStore, sessions: SessionStore, access: AccessStore) -> int:
    user = users.get_by_email(normalize_email(args.email))
    if user is None:
        print(f"  [!] No user '{args.email}'", file=sys.stderr)
        return 1
    users.set_active(user.id, args.active)
    print(f"User {user.id} is now {'active' if args.active else 'inactive'}")
    return 0


def cmd_revoke_sessions(
    args: argparse.Namespace, users: UserStore, sessions: SessionStore, access: AccessStore
) -> int:
    user = users.get_by_email(normalize_email(args.email))
    if user is None:
        print(f"  [!] No user '{args.email}'", file=sys.stderr)
        return 1
    count = sessions.revoke_all(user.id)
    print(f"Revoked {count} session(s) for user {user.id}")
    return 0


def cmd_purge_sessions(
    args: argparse.Namespace, users: UserStore, sessions: SessionStore, access: AccessStore
) -> int:
    print(f"Purged {sessions.purge_expired()} expired session(s)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="RoleGate management CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--database-url", help="Override DATABASE_URL")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("seed", help="Create default roles/permissions (idempotent)").set_defaults(func=cmd_seed)

    p = sub.add_parser("create-user", help="Create a user account")
    p.add_argument("email")
    p.add_argument("--password", help="Prompted for when omitted")
    p.add_argument("--name")
    p.add_argument("--role", action="append", help="Extra role key (repeatable)")
    p.set_defaults(func=cmd_create_user)

    p = sub.add_parser("set-active", help="Activate or deactivate an account")
    p.add_argument("email")
    group = p.add_mutually_exclusive_group(required=True)
    group.add_argument("--active", dest="active", action="store_true")
    group.add_argument("--inactive", dest="active", action="store_false")
    p.set_defaults(func=cmd_set_active)

    p = sub.add_parser("revoke-sessions", help="Log a user out on every device")
    p.add_argument("email")
    p.set_defaults(func=cmd_revoke_sessions)

    sub.add_parser("purge-sessions", help="Delete expired sessions").set_defaults(func=cmd_purge_sessions)
    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)-5s %(name)s %(message)s")
    args = build_parser().parse_args(argv)
    db_url = args.database_url or get_settings().database_url
    users, sessions, access = _build(db_url)
    try:
        return args.func(args, users, sessions, access)
    finally:
        users.engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
