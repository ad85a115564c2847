"""
api/routes/v1/users.py -- User management REST endpoints.

Routes:
  GET    /api/v1/users                  -- paged user list (admin only)
  PUT    /api/v1/users/profile          -- update own name (requires auth)
  PUT    /api/v1/users/change-password  -- change own password (requires auth)
  DELETE /api/v1/users/account          -- delete own account (requires auth)
  GET    /api/v1/users/{user_id}        -- self or admin
  PUT    /api/v1/users/{user_id}        -- update name/role/isActive (admin only)
  DELETE /api/v1/users/{user_id}        -- delete a user (admin only)

The fixed-path routes are declared before the /{user_id} routes so that
"profile", "change-password" and "account" are never parsed as ids.

Security:
  An admin cannot delete or deactivate their own account through the admin
  routes; that would risk locking every admin out.
  Changing a password revokes all refresh tokens of the user.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import AdminUserUpdate, ChangePasswordRequest, Envelope, Pagination, ProfileUpdate, UserList, UserListRow, UserOut
from auth.dependencies import get_current_user, require_admin
from auth.models import Role, User
from auth.store import UserStore
from core.errors import AuthorizationError, NotFoundError, ValidationError

# Auth policy:
# - GET    /api/v1/users:                 requires admin (require_admin)
# - PUT    /api/v1/users/profile:         requires auth (get_current_user)
# - PUT    /api/v1/users/change-password: requires auth (get_current_user)
# - DELETE /api/v1/users/account:         requires auth (get_current_user)
# - GET    /api/v1/users/{id}:            requires auth; self or admin
# - PUT    /api/v1/users/{id}:            requires admin (require_admin)
# - DELETE /api/v1/users/{id}:            requires admin (require_admin)
router = APIRouter()


def _user_store(request: Request) -> UserStore:
    return request.app.state.user_store


# ---------------------------------------------------------------------------
# Admin listing
# ---------------------------------------------------------------------------


@router.get("/users", response_model=Envelope[UserList])
def list_users(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    search: Optional[str] = Query(default=None, max_length=100),
    _admin: User = Depends(require_admin),
) -> Envelope[UserList]:
    """Return one page of users with their plan and subscription status."""
    users, total = _user_store(request).list_users(offset=(page - 1) * limit, limit=limit, search=search)
    subs = request.app.state.subscription_store.get_many_by_user([u.id for u in users])
    rows = [UserListRow.from_domain_with_subscription(u, subs.get(u.id)) for u in users]
    return Envelope(data=UserList(users=rows, pagination=Pagination.build(page, limit, total)))


# ---------------------------------------------------------------------------
# Self-service
# ---------------------------------------------------------------------------


@router.put("/users/profile", response_model=Envelope[UserOut])
def update_profile(
    request: Request,
    body: ProfileUpdate,
    current_user: User = Depends(get_current_user),
) -> Envelope[UserOut]:
    user = request.app.state.accounts.update_profile(current_user.id, **body.model_dump(exclude_unset=True))
    return Envelope(message="Profile updated successfully", data=UserOut.from_domain(user))


@router.put("/users/change-password", response_model=Envelope[None])
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
) -> Envelope[None]:
    """Change the caller's password. Every session must log in again afterwards."""
    request.app.state.accounts.change_password(current_user.id, body.current_password, body.new_password)
    return Envelope(message="Password changed successfully")


@router.delete("/users/account", response_model=Envelope[None])
def delete_account(request: Request, current_user: User = Depends(get_current_user)) -> Envelope[None]:
    """Delete the caller's account; projects, tokens and subscription go with it."""
    request.app.state.accounts.delete_account(current_user.id)
    return Envelope(message="Account deleted successfully")


# ---------------------------------------------------------------------------
# By id
# ---------------------------------------------------------------------------


@router.get("/users/{user_id}", response_model=Envelope[UserOut])
def get_user(request: Request, user_id: int, current_user: User = Depends(get_current_user)) -> Envelope[UserOut]:
    if current_user.id != user_id and current_user.role != Role.ADMIN:
        raise AuthorizationError()
    user = _user_store(request).get_by_id(user_id)
    if user is None:
        raise NotFoundError("User not found.")
    return Envelope(data=UserOut.from_domain(user))


@router.put("/users/{user_id}", response_model=Envelope[UserOut])
def update_user(
    request: Request,
    user_id: int,
    body: AdminUserUpdate,
    admin: User = Depends(require_admin),
) -> Envelope[UserOut]:
    """Update a user's name, role or active flag. None fields are left unchanged."""
    store = _user_store(request)
    if store.get_by_id(user_id) is None:
        raise NotFoundError("User not found.")
    if user_id == admin.id and (body.is_active is False or body.role == Role.USER):
        raise ValidationError("You cannot deactivate or demote your own account.")
    fields = {k: v for k, v in body.model_dump().items() if v is not None}
    if fields:
        store.update_user(user_id, **fields)
    if body.is_active is False:
        # A deactivated user must not be able to refresh back in.
        request.app.state.tokens.revoke_all_for_user(user_id)
    return Envelope(message="User updated successfully", data=UserOut.from_domain(store.get_by_id(user_id)))


@router.delete("/users/{user_id}", response_model=Envelope[None])
def delete_user(request: Request, user_id: int, admin: User = Depends(require_admin)) -> Envelope[None]:
    if user_id == admin.id:
        raise ValidationError("You cannot delete your own account from the admin panel.")
    if not _user_store(request).delete_user(user_id):
        raise NotFoundError("User not found.")
    return Envelope(message="User deleted successfully")
