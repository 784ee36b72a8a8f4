"""
api/routes/v1/admin.py -- User access administration.

Routes (mounted under settings.api_prefix):
  GET  /admin/users               -- users with roles/permissions (manage_users)
  POST /admin/update-user-access  -- replace a user's roles (manage_users + CSRF)

The manage_users gate runs first (401 anonymous / 403 lacking permission),
then CSRF, then body validation, then AccessStore.replace_roles().
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import AdminUserOut, AdminUsersResponse, UpdateUserAccessRequest, UpdateUserAccessResponse
from auth.access import AccessStore
from auth.dependencies import require_permission, verify_csrf
from auth.models import CurrentUser

MANAGE_USERS = "manage_users"

require_manage_users = require_permission(MANAGE_USERS)

router = APIRouter()


@router.get("/admin/users", response_model=AdminUsersResponse)
def list_users(request: Request, current_user: CurrentUser = Depends(require_manage_users)) -> AdminUsersResponse:
    access: AccessStore = request.app.state.access_store
    limit: int = request.app.state.settings.admin_users_limit
    return AdminUsersResponse(users=[AdminUserOut.from_access(u) for u in access.list_users_with_access(limit)])


@router.post(
    "/admin/update-user-access",
    response_model=UpdateUserAccessResponse,
    dependencies=[Depends(require_manage_users), Depends(verify_csrf)],
)
def update_user_access(request: Request, body: UpdateUserAccessRequest) -> UpdateUserAccessResponse:
    """Replace the target user's roles with the recognized keys in body.roles.

    Unknown role keys are skipped and echoed back in "skipped". A missing or
    null "roles" clears every role.
    """
    access: AccessStore = request.app.state.access_store
    roles = body.roles if body.roles is not None else []
    change = access.replace_roles(body.user_id, roles)
    return UpdateUserAccessResponse(assigned=change.assigned, skipped=change.skipped)
