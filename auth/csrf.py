"""
auth/csrf.py -- Anti-forgery tokens bound to the browser session.

The token is independent of login state: GET /csrf issues one to an anonymous
browser so the SPA can POST /login and /register. It survives login and is
dropped together with everything else on logout, so a token captured before
logout is useless afterwards.

Comparison uses hmac.compare_digest to avoid leaking the token through
response-time differences.
"""

from __future__ import annotations

import hmac
import secrets

from auth.context import SessionContext
from auth.errors import InvalidCsrf


def issue(ctx: SessionContext) -> str:
    """Return the browser session's CSRF token, creating it on first use."""
    token = ctx.csrf_token
    if token is None:
        token = secrets.token_hex(32)
        ctx.csrf_token = token
    return token


def verify(ctx: SessionContext, submitted) -> None:
    """Raise InvalidCsrf unless submitted matches the stored token."""
    expected = ctx.csrf_token
    if expected is None:
        raise InvalidCsrf()
    if not isinstance(submitted, str) or not submitted:
        raise InvalidCsrf()
    if not hmac.compare_digest(expected.encode("utf-8"), submitted.encode("utf-8")):
        raise InvalidCsrf()
