"""
auth/dependencies.py -- FastAPI Depends() helpers for sessions, gates and CSRF.

Identity travels in the browser-session cookie managed by Starlette's
SessionMiddleware. get_session_context() wraps request.session into the
explicit SessionContext the engine expects.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises Unauthorized (401).
require_permission()/require_role() build gates that additionally raise
Forbidden (403) based on the already-resolved snapshot.
verify_csrf() is attached to every mutating route and runs before the body
model is validated, so a forged request never reaches business logic.

Layer rule: this module may import from fastapi because it is part of the
dependency injection system. No imports from api/.
"""

from __future__ import annotations

import json
from collections.abc import Callable

from fastapi import Request

from auth import csrf
from auth.access import has_permission, has_role
from auth.context import SessionContext
from auth.engine import AuthEngine
from auth.errors import Forbidden, Unauthorized
from auth.models import CurrentUser

CSRF_HEADER = "X-CSRF-Token"
CSRF_JSON_FIELD = "csrfToken"
CSRF_FORM_FIELD = "csrf_token"

_FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


def is_form_request(request: Request) -> bool:
    return request.headers.get("content-type", "").lower().startswith(_FORM_TYPES)


def get_auth_engine(request: Request) -> AuthEngine:
    return request.app.state.auth_engine


def get_session_context(request: Request) -> SessionContext:
    """Return the request's SessionContext, building it once per request."""
    ctx = getattr(request.state, "session_context", None)
    if ctx is None:
        ctx = SessionContext(
            request.session,
            ip=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )
        request.state.session_context = ctx
    return ctx


def try_get_current_user(request: Request) -> CurrentUser | None:
    """Resolve the current user, or None. Never raises for anonymous requests."""
    return get_auth_engine(request).current_user(get_session_context(request))


def get_current_user(request: Request) -> CurrentUser:
    """Require authentication. Raises Unauthorized (401) if no valid session.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: CurrentUser = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise Unauthorized()
    return user


def require_permission(perm_key: str) -> Callable[[Request], CurrentUser]:
    """Build a dependency that requires perm_key. 401 if anonymous, 403 if lacking."""

    def dependency(request: Request) -> CurrentUser:
        user = get_current_user(request)
        if not has_permission(user, perm_key):
            raise Forbidden()
        return user

    return dependency


def require_role(role_key: str) -> Callable[[Request], CurrentUser]:
    """Build a dependency that requires role_key. 401 if anonymous, 403 if lacking."""

    def dependency(request: Request) -> CurrentUser:
        user = get_current_user(request)
        if not has_role(user, role_key):
            raise Forbidden()
        return user

    return dependency


async def _submitted_csrf_token(request: Request):
    """Pull the submitted token from the JSON body, form body, or header.

    Starlette caches the body on the Request, so reading it here does not
    starve the route's own body parsing.
    """
    if is_form_request(request):
        form = await request.form()
        token = form.get(CSRF_FORM_FIELD)
    else:
        raw = await request.body()
        token = None
        if raw:
            try:
                payload = json.loads(raw)
            except ValueError:
                payload = None
            if isinstance(payload, dict):
                token = payload.get(CSRF_JSON_FIELD)
    if token is None:
        token = request.headers.get(CSRF_HEADER)
    return token


async def verify_csrf(request: Request) -> None:
    """Dependency: raise InvalidCsrf (403) unless the request carries the session's token."""
    csrf.verify(get_session_context(request), await _submitted_csrf_token(request))
