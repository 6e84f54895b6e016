"""Request/response schemas for auth and user endpoints (camelCase on the wire)."""

from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from pgdesk.core import security
from pgdesk.core.security import Role

T = TypeVar("T")


class CamelModel(BaseModel):
    """Base for wire models: snake_case in Python, camelCase in JSON."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class LoginRequest(CamelModel):
    """Credentials for login."""

    email: str = Field(..., min_length=3, max_length=255, description="Email address")
    password: str = Field(..., min_length=1, max_length=128, description="Password")


class RefreshRequest(CamelModel):
    refresh_token: str = Field(..., min_length=1, description="Refresh token from login or the last refresh")


class LogoutRequest(CamelModel):
    refresh_token: str | None = Field(default=None, description="Refresh token to revoke")


class PasswordChangeRequest(CamelModel):
    current_password: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(..., min_length=8, max_length=128)


class UserStatusUpdate(CamelModel):
    is_active: bool


class UserSnapshot(CamelModel):
    """Public view of a user. Never carries the password hash."""

    id: int
    email: str
    first_name: str | None = None
    last_name: str | None = None
    role: Role
    branch_id: str | None = None
    is_active: bool
    last_login_at: datetime | None = None
    created_at: datetime | None = None
    login_attempts: int = 0
    lock_until: datetime | None = None

    @computed_field(alias="isLocked")
    @property
    def is_locked(self) -> bool:
        lock_until = security.as_utc(self.lock_until)
        return lock_until is not None and lock_until > security.utcnow()


class TokenPairOut(CamelModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class SessionData(CamelModel):
    """Payload of login and refresh responses."""

    user: UserSnapshot
    tokens: TokenPairOut


class UserData(CamelModel):
    user: UserSnapshot


class UsersData(CamelModel):
    users: list[UserSnapshot]


class ApiResponse(CamelModel, Generic[T]):
    """Success envelope shared by every endpoint."""

    success: bool = True
    message: str | None = None
    data: T | None = None


class ErrorResponse(CamelModel):
    success: bool = False
    message: str
    code: str | None = None
