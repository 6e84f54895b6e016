"""Auth endpoints: login, token refresh, logout, current user, password change."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from pgdesk.api.deps import (
    CurrentUser,
    Limiter,
    OptionalUser,
    client_ip,
    enforce_rate_limit,
    get_auth_service,
)
from pgdesk.core.security import TokenPair
from pgdesk.models import User
from pgdesk.schemas.auth import (
    ApiResponse,
    LoginRequest,
    LogoutRequest,
    PasswordChangeRequest,
    RefreshRequest,
    SessionData,
    TokenPairOut,
    UserData,
    UserSnapshot,
)
from pgdesk.services.auth import AuthService

router = APIRouter()

Auth = Annotated[AuthService, Depends(get_auth_service)]


def _session_data(user: User, pair: TokenPair) -> SessionData:
    return SessionData(
        user=UserSnapshot.model_validate(user),
        tokens=TokenPairOut(access_token=pair.access_token, refresh_token=pair.refresh_token),
    )


@router.post("/login", response_model=ApiResponse[SessionData])
def login(
    body: LoginRequest,
    request: Request,
    auth: Auth,
    limiter: Limiter,
) -> ApiResponse[SessionData]:
    """
    Authenticate with email and password; returns the user and a token pair.
    Send the access token as: Authorization: Bearer <accessToken>
    Limited per client IP and per email.
    """
    enforce_rate_limit(limiter, f"auth:login:ip:{client_ip(request)}")
    enforce_rate_limit(limiter, f"auth:login:email:{body.email.strip().lower()}")
    user, pair = auth.login(body.email, body.password)
    return ApiResponse(message="Login successful", data=_session_data(user, pair))


@router.post("/refresh", response_model=ApiResponse[SessionData])
def refresh(
    body: RefreshRequest,
    request: Request,
    auth: Auth,
    limiter: Limiter,
) -> ApiResponse[SessionData]:
    """Exchange a refresh token for a new pair. The presented refresh token is consumed."""
    enforce_rate_limit(limiter, f"auth:refresh:ip:{client_ip(request)}")
    user, pair = auth.refresh(body.refresh_token)
    return ApiResponse(message="Token refreshed successfully", data=_session_data(user, pair))


@router.post("/logout", response_model=ApiResponse[None])
def logout(
    user: OptionalUser,
    auth: Auth,
    body: LogoutRequest | None = None,
) -> ApiResponse[None]:
    """
    End a session. The refresh token in the body is revoked; it also authenticates
    the call on its own, so an expired access token does not block logout.
    """
    auth.logout(user, body.refresh_token if body else None)
    return ApiResponse(message="Logged out successfully")


@router.get("/me", response_model=ApiResponse[UserData])
def me(user: CurrentUser) -> ApiResponse[UserData]:
    return ApiResponse(data=UserData(user=UserSnapshot.model_validate(user)))


@router.put("/password", response_model=ApiResponse[SessionData])
def change_password(
    body: PasswordChangeRequest,
    user: CurrentUser,
    auth: Auth,
) -> ApiResponse[SessionData]:
    """Change password. Other sessions lose their refresh tokens; this one gets a new pair."""
    pair = auth.change_password(user, body.current_password, body.new_password)
    return ApiResponse(message="Password changed successfully", data=_session_data(user, pair))
