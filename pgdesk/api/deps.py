"""Request dependencies: DB-backed services, current user resolution, and role gates."""

import logging
from typing import Annotated, Callable

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from pgdesk.core.config import get_settings
from pgdesk.core.database import get_db
from pgdesk.core.exceptions import (
    AuthenticationError,
    InsufficientRoleError,
    MissingTokenError,
    RateLimitedError,
    TokenInvalidError,
)
from pgdesk.core.ratelimit import RateLimiter
from pgdesk.core.security import (
    ADMIN_ROLES,
    SUPERADMIN_ROLES,
    Role,
    RoleSet,
    verify_access_token,
)
from pgdesk.models import User
from pgdesk.services.auth import AuthService
from pgdesk.services.credentials import password_changed_after

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_auth_service(db: Annotated[Session, Depends(get_db)]) -> AuthService:
    return AuthService(db, get_settings())


def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    db: Annotated[Session, Depends(get_db)],
) -> User:
    """
    Dependency: require a valid Bearer access token and return the user it names.

    Raises 401 when the token is missing, malformed, expired or signed for another
    token class, and when the user is gone, deactivated, or changed password after
    the token was issued. The user is also stored on request.state.user.
    """
    if credentials is None or not credentials.credentials:
        raise MissingTokenError()
    claims = verify_access_token(credentials.credentials)

    user = db.get(User, claims.user_id)
    if user is None:
        raise TokenInvalidError("User no longer exists.")
    if not user.is_active:
        raise TokenInvalidError("User account is deactivated.")
    if password_changed_after(user, claims.issued_at):
        raise TokenInvalidError("User recently changed password. Please log in again.")

    request.state.user = user
    return user


def get_optional_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    db: Annotated[Session, Depends(get_db)],
) -> User | None:
    """Like get_current_user, but returns None instead of failing."""
    if credentials is None:
        return None
    try:
        return get_current_user(request, credentials, db)
    except AuthenticationError:
        return None


def get_rate_limiter(request: Request) -> RateLimiter:
    """One limiter per app, created on first use."""
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        limiter = RateLimiter.from_settings(get_settings())
        request.app.state.rate_limiter = limiter
    return limiter


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def enforce_rate_limit(limiter: RateLimiter, key: str) -> None:
    if not limiter.allow(key):
        logger.warning("Rate limit exceeded key=%s", key)
        raise RateLimitedError(retry_after=limiter.retry_after())


def require_roles(allowed: RoleSet) -> Callable[..., User]:
    """
    Build a dependency that admits only users whose single role is in `allowed`.

    `allowed` must be a non-empty frozenset of Role (see role_set()).
    """
    if not isinstance(allowed, frozenset) or not allowed:
        raise TypeError("require_roles() expects a non-empty RoleSet")
    if not all(isinstance(r, Role) for r in allowed):
        raise TypeError("require_roles() expects a RoleSet of Role members")
    allowed_names = sorted(r.value for r in allowed)

    def dependency(user: Annotated[User, Depends(get_current_user)]) -> User:
        try:
            role = Role(user.role)
        except ValueError:
            role = None
        if role not in allowed:
            logger.info(
                "Authorization denied user_id=%s role=%s allowed=%s",
                user.id,
                user.role,
                allowed_names,
            )
            raise InsufficientRoleError(user.role, allowed_names)
        return user

    return dependency


require_admin = require_roles(ADMIN_ROLES)
require_superadmin = require_roles(SUPERADMIN_ROLES)

CurrentUser = Annotated[User, Depends(get_current_user)]
OptionalUser = Annotated[User | None, Depends(get_optional_user)]
Limiter = Annotated[RateLimiter, Depends(get_rate_limiter)]
AdminUser = Annotated[User, Depends(require_admin)]
SuperadminUser = Annotated[User, Depends(require_superadmin)]
