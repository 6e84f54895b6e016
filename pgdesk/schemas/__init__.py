"""Pydantic request/response schemas."""

from pgdesk.schemas.auth import (
    ApiResponse,
    ErrorResponse,
    LoginRequest,
    LogoutRequest,
    PasswordChangeRequest,
    RefreshRequest,
    SessionData,
    TokenPairOut,
    UserData,
    UsersData,
    UserSnapshot,
    UserStatusUpdate,
)
from pgdesk.schemas.health import HealthResponse

__all__ = [
    "ApiResponse",
    "ErrorResponse",
    "HealthResponse",
    "LoginRequest",
    "LogoutRequest",
    "PasswordChangeRequest",
    "RefreshRequest",
    "SessionData",
    "TokenPairOut",
    "UserData",
    "UserSnapshot",
    "UserStatusUpdate",
    "UsersData",
]
