"""
Exception hierarchy for PGDesk.

Services raise these; the API layer turns them into the
``{"success": false, "message": ...}`` envelope with the matching status code.
"""

from typing import Any


class PGDeskError(Exception):
    """Base exception for all PGDesk errors."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to the API failure envelope."""
        body: dict[str, Any] = {"success": False, "message": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class AuthenticationError(PGDeskError):
    """Caller is not authenticated (missing, invalid or expired credentials)."""

    status_code = 401


class AuthorizationError(PGDeskError):
    """Caller is authenticated but not allowed to do this."""

    status_code = 403


class NotFoundError(PGDeskError):
    """Resource not found."""

    status_code = 404


class ConflictError(PGDeskError):
    """Resource already exists."""

    status_code = 409


class ValidationError(PGDeskError):
    """Input validation failed."""

    status_code = 422


class InvalidCredentialsError(AuthenticationError):
    """Wrong email or password. The message never says which one."""

    def __init__(self, message: str = "Invalid email or password"):
        super().__init__(message, code="INVALID_CREDENTIALS")


class MissingTokenError(AuthenticationError):
    def __init__(self, message: str = "Access denied. No token provided."):
        super().__init__(message, code="MISSING_TOKEN")


class TokenExpiredError(AuthenticationError):
    """Token is past its expiry. Recoverable through the refresh flow."""

    def __init__(self, message: str = "Token expired."):
        super().__init__(message, code="TOKEN_EXPIRED")


class TokenInvalidError(AuthenticationError):
    """Bad signature, wrong token class, or claims that do not resolve to a usable user."""

    def __init__(self, message: str = "Invalid token."):
        super().__init__(message, code="TOKEN_INVALID")


class TokenMalformedError(TokenInvalidError):
    """Token could not be parsed at all."""

    def __init__(self, message: str = "Malformed token."):
        super().__init__(message)
        self.code = "TOKEN_MALFORMED"


class RefreshExhaustedError(AuthenticationError):
    """Refresh token expired, revoked or invalid. Terminal for the session."""

    def __init__(self, message: str = "Session expired. Please log in again."):
        super().__init__(message, code="REFRESH_EXHAUSTED")


class AccountLockedError(PGDeskError):
    """Too many failed logins."""

    status_code = 423

    def __init__(
        self,
        message: str = "Account is locked due to multiple failed login attempts. Please try again later.",
    ):
        super().__init__(message, code="ACCOUNT_LOCKED")


class RateLimitedError(PGDeskError):
    """Too many auth requests from one client or for one account."""

    status_code = 429

    def __init__(
        self,
        message: str = "Too many authentication attempts. Please try again later.",
        retry_after: int | None = None,
    ):
        details = {"retry_after": retry_after} if retry_after else None
        super().__init__(message, code="RATE_LIMITED", details=details)
        self.retry_after = retry_after


class AccountDisabledError(AuthorizationError):
    def __init__(self, message: str = "User account is deactivated."):
        super().__init__(message, code="ACCOUNT_DISABLED")


class AccountProtectedError(AuthorizationError):
    def __init__(self, message: str = "Cannot deactivate superadmin accounts."):
        super().__init__(message, code="ACCOUNT_PROTECTED")


class InsufficientRoleError(AuthorizationError):
    """User's role is not in the set allowed for the operation."""

    def __init__(self, user_role: str, allowed: list[str]):
        super().__init__(
            "Access denied. Insufficient permissions.",
            code="INSUFFICIENT_ROLE",
            details={"role": user_role, "allowed_roles": allowed},
        )


class UserNotFoundError(NotFoundError):
    def __init__(self, message: str = "User not found"):
        super().__init__(message, code="USER_NOT_FOUND")


class EmailAlreadyExistsError(ConflictError):
    def __init__(self, email: str):
        super().__init__(
            "User with this email already exists",
            code="EMAIL_EXISTS",
            details={"email": email},
        )
