"""
tests/test_api_admin.py -- Integration tests for the admin access endpoints.

Coverage:
  - GET /admin/users: 401 anonymous, 403 without manage_users, listing shape
  - POST /admin/update-user-access: gate order, CSRF, input validation,
    full-replace semantics with unknown keys skipped
  - Permission changes are visible on the target's very next /me
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from conftest import API, fetch_csrf, make_admin, register


def _update(client: TestClient, payload: dict, with_csrf: bool = True):
    if with_csrf:
        payload = {**payload, "csrfToken": fetch_csrf(client)}
    return client.post(f"{API}/admin/update-user-access", json=payload)


class TestListUsers:
    def test_anonymous_is_401(self, client: TestClient) -> None:
        resp = client.get(f"{API}/admin/users")
        assert resp.status_code == 401
        assert resp.json()["code"] == "UNAUTHORIZED"

    def test_plain_user_is_403(self, client: TestClient) -> None:
        register(client, "pleb@corp.io")
        resp = client.get(f"{API}/admin/users")
        assert resp.status_code == 403
        assert resp.json()["code"] == "FORBIDDEN"

    def test_admin_sees_users_newest_first(self, client: TestClient) -> None:
        member = register(client, "member@corp.io", name="Member")
        client.cookies.clear()
        admin = make_admin(client)

        resp = client.get(f"{API}/admin/users")
        assert resp.status_code == 200
        users = resp.json()["users"]
        assert [u["id"] for u in users] == [admin["id"], member["id"]]
        assert users[1] == {
            "id": member["id"],
            "email": "member@corp.io",
            "name": "Member",
            "is_active": 1,
            "roles": ["user"],
            "permissions": [],
        }
        assert users[0]["roles"] == ["admin", "user"]
        assert users[0]["permissions"] == ["manage_users"]


class TestUpdateUserAccess:
    def test_replace_roles_skips_unknown(self, client: TestClient) -> None:
        target = register(client, "target@corp.io")
        client.cookies.clear()
        make_admin(client)

        resp = _update(client, {"userId": target["id"], "roles": ["admin", "bogus-role"]})
        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "assigned": ["admin"], "skipped": ["bogus-role"]}

        access = client.app.state.access_store
        assert access.roles_of(target["id"]) == ["admin"]
        assert access.permissions_of(target["id"]) == ["manage_users"]

    def test_target_sees_new_permissions_on_next_request(self, client: TestClient) -> None:
        target = register(client, "fresh@corp.io")
        target_cookies = dict(client.cookies)
        client.cookies.clear()
        make_admin(client)
        _update(client, {"userId": target["id"], "roles": ["admin"]})

        client.cookies.clear()
        for name, value in target_cookies.items():
            client.cookies.set(name, value)
        me = client.get(f"{API}/me").json()["user"]
        assert me["roles"] == ["admin"]
        assert me["permissions"] == ["manage_users"]

    def test_admin_can_demote_self(self, client: TestClient) -> None:
        admin = make_admin(client)
        assert _update(client, {"userId": admin["id"], "roles": ["user"]}).status_code == 200
        assert client.get(f"{API}/admin/users").status_code == 403

    def test_requires_csrf(self, client: TestClient) -> None:
        admin = make_admin(client)
        resp = _update(client, {"userId": admin["id"], "roles": []}, with_csrf=False)
        assert resp.status_code == 403
        assert resp.json()["code"] == "INVALID_CSRF"
        assert client.app.state.access_store.roles_of(admin["id"]) == ["admin", "user"]

    def test_requires_manage_users(self, client: TestClient) -> None:
        user = register(client, "sneaky@corp.io")
        resp = _update(client, {"userId": user["id"], "roles": ["admin"]})
        assert resp.status_code == 403
        assert resp.json()["code"] == "FORBIDDEN"
        assert client.app.state.access_store.roles_of(user["id"]) == ["user"]

    def test_anonymous_is_401(self, client: TestClient) -> None:
        fetch_csrf(client)
        resp = _update(client, {"userId": 1, "roles": []})
        assert resp.status_code == 401

    def test_invalid_user_id(self, client: TestClient) -> None:
        make_admin(client)
        for user_id in (0, -5, None, 99999):
            resp = _update(client, {"userId": user_id, "roles": ["user"]})
            assert resp.status_code == 400, user_id
            assert resp.json()["field"] == "userId"

    def test_roles_must_be_list(self, client: TestClient) -> None:
        admin = make_admin(client)
        for roles in ("admin", [1, 2], {"admin": True}):
            resp = _update(client, {"userId": admin["id"], "roles": roles})
            assert resp.status_code == 400, roles
            assert resp.json()["field"] == "roles"

    def test_missing_or_null_roles_clears(self, client: TestClient) -> None:
        access = client.app.state.access_store
        target = register(client, "cleared@corp.io")
        client.cookies.clear()
        make_admin(client)

        resp = _update(client, {"userId": target["id"]})
        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "assigned": [], "skipped": []}
        assert access.roles_of(target["id"]) == []

        access.assign_role(target["id"], "user")
        assert _update(client, {"userId": target["id"], "roles": None}).status_code == 200
        assert access.roles_of(target["id"]) == []

    def test_wrong_verb(self, client: TestClient) -> None:
        make_admin(client)
        assert client.get(f"{API}/admin/update-user-access").status_code == 405
