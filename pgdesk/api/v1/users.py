"""User administration (role-gated): list users, activate/deactivate, unlock."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from pgdesk.api.deps import AdminUser, SuperadminUser, get_auth_service
from pgdesk.core.database import get_db
from pgdesk.core.security import Role
from pgdesk.models import User
from pgdesk.schemas.auth import ApiResponse, UserData, UsersData, UserSnapshot, UserStatusUpdate
from pgdesk.services.auth import AuthService

router = APIRouter()


@router.get("", response_model=ApiResponse[UsersData])
def list_users(
    admin: AdminUser,
    db: Annotated[Session, Depends(get_db)],
) -> ApiResponse[UsersData]:
    """List users. Superadmins see everyone; admins only see users of their own branch."""
    query = db.query(User)
    if admin.role != Role.SUPERADMIN.value:
        if admin.branch_id is None:
            # An admin without a branch manages nobody.
            return ApiResponse(data=UsersData(users=[]))
        query = query.filter(User.branch_id == admin.branch_id)
    users = query.order_by(User.id).all()
    return ApiResponse(data=UsersData(users=[UserSnapshot.model_validate(u) for u in users]))


@router.patch("/{user_id}/status", response_model=ApiResponse[UserData])
def update_user_status(
    user_id: int,
    body: UserStatusUpdate,
    _superadmin: SuperadminUser,
    auth: Annotated[AuthService, Depends(get_auth_service)],
) -> ApiResponse[UserData]:
    """Activate or deactivate a user (superadmin only). Deactivation ends their sessions."""
    user = auth.credentials.get(user_id)
    auth.set_active(user, body.is_active)
    state = "activated" if body.is_active else "deactivated"
    return ApiResponse(
        message=f"User {state} successfully",
        data=UserData(user=UserSnapshot.model_validate(user)),
    )


@router.patch("/{user_id}/unlock", response_model=ApiResponse[UserData])
def unlock_user(
    user_id: int,
    _superadmin: SuperadminUser,
    auth: Annotated[AuthService, Depends(get_auth_service)],
) -> ApiResponse[UserData]:
    """Clear a login lockout (superadmin only)."""
    user = auth.credentials.get(user_id)
    auth.credentials.unlock(user)
    return ApiResponse(
        message="User account unlocked successfully",
        data=UserData(user=UserSnapshot.model_validate(user)),
    )
