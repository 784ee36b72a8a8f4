"""
API request and response models for the RoleGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract consumed by the
single-page frontend. Field names (csrfToken, userId, is_active, ...) are part
of that contract and must not change. They are intentionally separate from
the dataclasses in auth/models.py, which own the internal domain
representation. Route handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import CurrentUser, UserAccess

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class CsrfBody(BaseModel):
    """Base for every mutating request. The token itself is checked by the
    verify_csrf dependency before the body model is validated."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    csrf_token: Optional[str] = Field(default=None, alias="csrfToken")


class LoginRequest(CsrfBody):
    email: str = ""
    password: str = ""


class RegisterRequest(CsrfBody):
    name: Optional[str] = None
    email: str = ""
    password: str = ""


class LogoutRequest(CsrfBody):
    pass


class UpdateUserAccessRequest(CsrfBody):
    """Body for POST /admin/update-user-access.

    roles is a full replacement set; omitted or null means no roles. A
    "permissions" key sent by older clients is ignored: permissions are
    derived from roles only.
    """

    user_id: Optional[int] = Field(default=None, alias="userId")
    roles: Optional[list[str]] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserOut(BaseModel):
    """The user object every client-facing endpoint returns."""

    id: int
    email: str
    name: str
    roles: list[str]
    permissions: list[str]

    @classmethod
    def from_current(cls, user: CurrentUser) -> "UserOut":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name or "",
            roles=list(user.roles),
            permissions=list(user.permissions),
        )


class AdminUserOut(BaseModel):
    id: int
    email: str
    name: str
    is_active: int  # 0/1, as the admin UI expects
    roles: list[str]
    permissions: list[str]

    @classmethod
    def from_access(cls, user: UserAccess) -> "AdminUserOut":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name or "",
            is_active=1 if user.is_active else 0,
            roles=user.roles,
            permissions=user.permissions,
        )


class CsrfResponse(BaseModel):
    csrfToken: str


class MeResponse(BaseModel):
    user: Optional[UserOut] = None


class AuthOkResponse(BaseModel):
    ok: bool = True
    user: Optional[UserOut] = None


class OkResponse(BaseModel):
    ok: bool = True


class AdminUsersResponse(BaseModel):
    users: list[AdminUserOut]


class UpdateUserAccessResponse(BaseModel):
    ok: bool = True
    assigned: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Uniform error envelope.

    error is a human-readable string (the frontend displays it directly),
    code is a stable machine-readable identifier, field names the offending
    input for validation failures.
    """

    ok: bool = False
    error: str
    code: str
    field: Optional[str] = None
