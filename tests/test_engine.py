"""Unit tests for auth/engine.py -- the session lifecycle without HTTP.

Each test drives AuthEngine with a SessionContext over a plain dict, which is
exactly what request.session is to the engine.
"""

from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from auth.context import TOKEN_KEY, USER_ID_KEY, SessionContext
from auth.engine import AuthEngine
from auth.errors import EmailTaken, InvalidEmail, WeakPassword
from auth.tokens import hash_session_token, verify_password


def _ctx() -> SessionContext:
    return SessionContext(ip="203.0.113.9", user_agent="pytest-agent")


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def test_register_then_login_resolves_same_user(auth_engine):
    reg_ctx = _ctx()
    result = auth_engine.register(reg_ctx, "dev@corp.io", "password1", "Dev")

    login_ctx = _ctx()
    assert auth_engine.login(login_ctx, "dev@corp.io", "password1") is True

    current = auth_engine.current_user(login_ctx)
    assert current is not None
    assert current.id == result.user_id
    assert auth_engine.current_user(reg_ctx).id == result.user_id


def test_register_normalizes_email_and_login_is_case_insensitive(auth_engine, stores):
    users, _, _ = stores
    result = auth_engine.register(_ctx(), "A@Ex.com", "password1")

    stored = users.get_by_id(result.user_id)
    assert stored.email == "a@ex.com"
    assert verify_password("password1", stored.password_hash)
    assert auth_engine.login(_ctx(), "A@Ex.com", "password1") is True


def test_register_grants_default_role_and_signs_in(auth_engine):
    ctx = _ctx()
    result = auth_engine.register(ctx, "new@corp.io", "password1", "  New  ")

    assert result.skipped_roles == []
    current = auth_engine.current_user(ctx)
    assert current.roles == ["user"]
    assert current.permissions == []
    assert current.name == "New"


def test_register_records_client_details(auth_engine, stores):
    _, sessions, _ = stores
    result = auth_engine.register(_ctx(), "net@corp.io", "password1")
    [record] = sessions.list_for_user(result.user_id)
    assert record.ip == bytes([203, 0, 113, 9])
    assert record.user_agent == "pytest-agent"


def test_register_duplicate_email_any_case(auth_engine):
    auth_engine.register(_ctx(), "dup@corp.io", "password1")
    with pytest.raises(EmailTaken) as exc:
        auth_engine.register(_ctx(), "  DUP@Corp.IO ", "password2")
    assert exc.value.field == "email"


def test_register_race_on_insert_is_email_taken(auth_engine, monkeypatch):
    """The loser of a check-then-insert race hits UNIQUE(email) and gets EmailTaken."""
    auth_engine.register(_ctx(), "race@corp.io", "password1")
    monkeypatch.setattr(auth_engine.users, "email_exists", lambda email: False)

    ctx = _ctx()
    with pytest.raises(EmailTaken):
        auth_engine.register(ctx, "race@corp.io", "password1")
    assert ctx.credentials() is None


def test_register_rolls_back_user_when_session_insert_fails(auth_engine, stores, monkeypatch):
    users, _, access = stores

    def failing_create(user_id, ttl_days, ip=None, user_agent=None, conn=None):
        raise OperationalError("INSERT INTO user_sessions", {}, Exception("disk I/O error"))

    monkeypatch.setattr(auth_engine.sessions, "create", failing_create)
    ctx = _ctx()
    with pytest.raises(OperationalError):
        auth_engine.register(ctx, "atomic@corp.io", "password1")

    assert users.get_by_email("atomic@corp.io") is None
    assert ctx.credentials() is None
    assert access.list_users_with_access() == []


def test_register_validation(auth_engine):
    with pytest.raises(InvalidEmail) as bad_email:
        auth_engine.register(_ctx(), "not-an-email", "password1")
    assert bad_email.value.field == "email"

    with pytest.raises(WeakPassword) as weak:
        auth_engine.register(_ctx(), "ok@corp.io", "short")
    assert weak.value.field == "password"


def test_register_without_default_role_reports_skip(stores):
    users, sessions, access = stores
    engine = AuthEngine(users, sessions, access, default_role_key="missing-role")

    ctx = _ctx()
    result = engine.register(ctx, "solo@corp.io", "password1")

    assert result.skipped_roles == ["missing-role"]
    assert engine.current_user(ctx).roles == []


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


def test_login_failures_are_indistinguishable(auth_engine, stores):
    users, _, _ = stores
    auth_engine.register(_ctx(), "real@corp.io", "password1")
    inactive = auth_engine.register(_ctx(), "gone@corp.io", "password1")
    users.set_active(inactive.user_id, False)

    outcomes = []
    for email, password in [
        ("real@corp.io", "wrong-password"),
        ("nobody@corp.io", "password1"),
        ("gone@corp.io", "password1"),
    ]:
        ctx = _ctx()
        outcomes.append(auth_engine.login(ctx, email, password))
        assert ctx.credentials() is None

    assert outcomes == [False, False, False]


def test_login_opens_additional_session_per_device(auth_engine, stores):
    _, sessions, _ = stores
    result = auth_engine.register(_ctx(), "multi@corp.io", "password1")
    laptop, phone = _ctx(), _ctx()
    auth_engine.login(laptop, "multi@corp.io", "password1")
    auth_engine.login(phone, "multi@corp.io", "password1")

    assert len(sessions.list_for_user(result.user_id)) == 3
    auth_engine.logout(laptop)
    assert auth_engine.current_user(laptop) is None
    assert auth_engine.current_user(phone).id == result.user_id


# ---------------------------------------------------------------------------
# Current user
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "state",
    [
        {},
        {USER_ID_KEY: 1},
        {TOKEN_KEY: "abc"},
        {USER_ID_KEY: "one", TOKEN_KEY: "abc"},
        {USER_ID_KEY: -1, TOKEN_KEY: "abc"},
        {USER_ID_KEY: 1, TOKEN_KEY: ""},
        {USER_ID_KEY: 1, TOKEN_KEY: 42},
        {USER_ID_KEY: 1, TOKEN_KEY: "f" * 64},
    ],
)
def test_current_user_is_none_for_missing_or_malformed_state(auth_engine, state):
    assert auth_engine.current_user(SessionContext(dict(state))) is None


def test_current_user_touches_last_seen(auth_engine, stores, clock):
    _, sessions, _ = stores
    ctx = _ctx()
    result = auth_engine.register(ctx, "seen@corp.io", "password1")
    [before] = sessions.list_for_user(result.user_id)

    clock.advance(hours=1)
    auth_engine.current_user(ctx)

    [after] = sessions.list_for_user(result.user_id)
    assert after.last_seen_at > before.last_seen_at
    assert after.expires_at == before.expires_at


def test_current_user_survives_touch_failure(auth_engine, monkeypatch):
    ctx = _ctx()
    result = auth_engine.register(ctx, "flaky@corp.io", "password1")

    def broken_touch(user_id, token_hash):
        raise OperationalError("UPDATE user_sessions", {}, Exception("database is locked"))

    monkeypatch.setattr(auth_engine.sessions, "touch", broken_touch)
    assert auth_engine.current_user(ctx).id == result.user_id


def test_current_user_none_after_expiry(auth_engine, clock):
    ctx = _ctx()
    auth_engine.register(ctx, "late@corp.io", "password1")
    clock.advance(days=7, seconds=1)
    assert auth_engine.current_user(ctx) is None


def test_current_user_none_when_deactivated(auth_engine, stores):
    users, _, _ = stores
    ctx = _ctx()
    result = auth_engine.register(ctx, "off@corp.io", "password1")
    users.set_active(result.user_id, False)
    assert auth_engine.current_user(ctx) is None


def test_roles_resolved_fresh_after_replace(auth_engine, stores):
    _, _, access = stores
    ctx = _ctx()
    result = auth_engine.register(ctx, "promo@corp.io", "password1")
    assert auth_engine.current_user(ctx).permissions == []

    access.replace_roles(result.user_id, ["admin"])
    current = auth_engine.current_user(ctx)
    assert current.roles == ["admin"]
    assert current.permissions == ["manage_users"]


# ---------------------------------------------------------------------------
# Logout
# ---------------------------------------------------------------------------


def test_logout_revokes_and_clears(auth_engine, stores):
    _, sessions, _ = stores
    ctx = _ctx()
    result = auth_engine.register(ctx, "bye@corp.io", "password1")
    ctx.csrf_token = "c" * 64
    _, raw_token = ctx.credentials()

    assert auth_engine.logout(ctx) is True
    assert dict(ctx.state) == {}
    assert sessions.validate(result.user_id, hash_session_token(raw_token)) is None


def test_logout_old_state_does_not_resolve(auth_engine):
    ctx = _ctx()
    auth_engine.register(ctx, "replay@corp.io", "password1")
    stolen = dict(ctx.state)

    auth_engine.logout(ctx)
    assert auth_engine.current_user(SessionContext(stolen)) is None


def test_second_logout_is_noop(auth_engine):
    ctx = _ctx()
    auth_engine.register(ctx, "twice@corp.io", "password1")
    assert auth_engine.logout(ctx) is True
    assert auth_engine.logout(ctx) is False
    assert auth_engine.logout(_ctx()) is False
