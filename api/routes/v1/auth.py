"""
api/routes/v1/auth.py -- Session lifecycle endpoints for the SPA.

Routes (mounted under settings.api_prefix):
  GET  /csrf      -- issue (or return) the browser session's CSRF token
  GET  /me        -- current user or null; never 401
  POST /login     -- password login; opens a server-side session
  POST /register  -- create account, grant default role, open session
  POST /logout    -- revoke session, clear browser session

Security:
  Every POST carries Depends(verify_csrf) in its decorator. Decorator
  dependencies are resolved before the body model, so a forged request gets
  403 before any validation or business logic runs. A wrong verb gets
  Starlette's automatic 405.
  [C1] Login failure is one generic 401 regardless of cause.
  [M5] Cache-Control: no-store on every response that changes session state.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from api.models import (
    AuthOkResponse,
    CsrfResponse,
    LoginRequest,
    LogoutRequest,
    MeResponse,
    OkResponse,
    RegisterRequest,
    UserOut,
)
from auth import csrf
from auth.context import SessionContext
from auth.dependencies import get_auth_engine, get_session_context, try_get_current_user, verify_csrf
from auth.engine import AuthEngine
from auth.errors import InvalidLogin, Unauthorized
from auth.models import CurrentUser

# Auth policy:
# - GET  /csrf:      public -- anonymous browsers need a token to log in
# - GET  /me:        public -- returns {"user": null} when anonymous
# - POST /login:     public + CSRF
# - POST /register:  public + CSRF
# - POST /logout:    public + CSRF -- clearing an anonymous session is a no-op
router = APIRouter()


@router.get("/csrf", response_model=CsrfResponse)
def get_csrf(ctx: SessionContext = Depends(get_session_context)) -> CsrfResponse:
    return CsrfResponse(csrfToken=csrf.issue(ctx))


@router.get("/me", response_model=MeResponse)
def me(current_user: CurrentUser | None = Depends(try_get_current_user)) -> MeResponse:
    """Return the current user, or {"user": null} for anonymous browsers."""
    return MeResponse(user=UserOut.from_current(current_user) if current_user else None)


@router.post("/login", response_model=AuthOkResponse, dependencies=[Depends(verify_csrf)])
def login(
    body: LoginRequest,
    response: Response,
    ctx: SessionContext = Depends(get_session_context),
    engine: AuthEngine = Depends(get_auth_engine),
) -> AuthOkResponse:
    """Authenticate with email and password.

    Returns the same InvalidLogin for unknown email, inactive account and
    wrong password [C1].
    """
    response.headers["Cache-Control"] = "no-store"  # [M5]
    if not engine.login(ctx, body.email, body.password):
        raise InvalidLogin()
    return AuthOkResponse(user=_resolve(engine, ctx))


@router.post("/register", response_model=AuthOkResponse, status_code=201, dependencies=[Depends(verify_csrf)])
def register(
    body: RegisterRequest,
    response: Response,
    ctx: SessionContext = Depends(get_session_context),
    engine: AuthEngine = Depends(get_auth_engine),
) -> AuthOkResponse:
    """Create an account and sign the browser in.

    Validation failures (InvalidEmail, WeakPassword, EmailTaken) surface as 400
    with the offending field via the AuthError handler.
    """
    response.headers["Cache-Control"] = "no-store"  # [M5]
    engine.register(ctx, body.email, body.password, body.name)
    return AuthOkResponse(user=_resolve(engine, ctx))


@router.post("/logout", response_model=OkResponse, dependencies=[Depends(verify_csrf)])
def logout(
    response: Response,
    body: LogoutRequest | None = None,
    ctx: SessionContext = Depends(get_session_context),
    engine: AuthEngine = Depends(get_auth_engine),
) -> OkResponse:
    """Revoke the session and clear all browser-session state.

    The emptied session makes SessionMiddleware expire the cookie.
    """
    response.headers["Cache-Control"] = "no-store"  # [M5]
    engine.logout(ctx)
    return OkResponse()


def _resolve(engine: AuthEngine, ctx: SessionContext) -> UserOut:
    user = engine.current_user(ctx)
    if user is None:
        # The session row was written a moment ago; losing it here means the
        # account was deactivated or the session revoked concurrently.
        raise Unauthorized()
    return UserOut.from_current(user)
