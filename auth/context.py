"""
auth/context.py -- Explicit per-request browser-session state.

SessionContext wraps the browser-session mapping (in the HTTP app this is
Starlette's request.session, a dict serialized into an itsdangerous-signed
cookie by SessionMiddleware) together with the client address and user agent.
The auth engine and CSRF guard receive it as an argument; nothing reads
ambient global state.

The browser session exists whether or not anyone is logged in: the CSRF token
lives here from the first GET /csrf, and the (user id, raw session token) pair
is added by login/registration and removed by logout.

Layer rule: no imports from api/ or fastapi -- any MutableMapping works,
which is how the unit tests drive the engine with a plain dict.
"""

from __future__ import annotations

from collections.abc import MutableMapping
from typing import Any

USER_ID_KEY = "auth_user_id"
TOKEN_KEY = "auth_session_token"
CSRF_KEY = "csrf_token"


class SessionContext:
    def __init__(
        self,
        state: MutableMapping[str, Any] | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        self.state: MutableMapping[str, Any] = state if state is not None else {}
        self.ip = ip
        self.user_agent = user_agent

    # ------------------------------------------------------------------
    # Login state
    # ------------------------------------------------------------------

    def credentials(self) -> tuple[int, str] | None:
        """Return (user_id, raw_token) if both are present and well-formed.

        The cookie is signed, so tampering is already rejected by the
        middleware; this only guards against stale or partial state.
        """
        user_id = self.state.get(USER_ID_KEY)
        token = self.state.get(TOKEN_KEY)
        if isinstance(user_id, bool):
            return None
        if isinstance(user_id, str) and user_id.isdigit():
            user_id = int(user_id)
        if not isinstance(user_id, int) or user_id <= 0:
            return None
        if not isinstance(token, str) or not token:
            return None
        return user_id, token

    def sign_in(self, user_id: int, raw_token: str) -> None:
        self.state[USER_ID_KEY] = user_id
        self.state[TOKEN_KEY] = raw_token

    # ------------------------------------------------------------------
    # CSRF
    # ------------------------------------------------------------------

    @property
    def csrf_token(self) -> str | None:
        token = self.state.get(CSRF_KEY)
        return token if isinstance(token, str) and token else None

    @csrf_token.setter
    def csrf_token(self, value: str) -> None:
        self.state[CSRF_KEY] = value

    # ------------------------------------------------------------------
    # Reset
    # ------------------------------------------------------------------

    def clear(self) -> None:
        """Drop ALL browser-session state, CSRF token included.

        With SessionMiddleware an emptied session makes the response expire
        the cookie.
        """
        self.state.clear()
