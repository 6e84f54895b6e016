"""Password hashing, roles, and JWT issuing/verification for access and refresh tokens."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from functools import lru_cache
from typing import TYPE_CHECKING, Any

import bcrypt
import jwt

from pgdesk.core.config import settings
from pgdesk.core.exceptions import (
    TokenExpiredError,
    TokenInvalidError,
    TokenMalformedError,
)

if TYPE_CHECKING:
    from pgdesk.models.user import User

# Bcrypt cost (rounds); 12 is a good default for security vs speed.
BCRYPT_ROUNDS = 12

# Min/max lengths for email and password validation.
EMAIL_MIN_LEN = 3
EMAIL_MAX_LEN = 255
PASSWORD_MIN_LEN = 8
PASSWORD_MAX_LEN = 128

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


class Role(str, Enum):
    """Permission tier. A user holds exactly one."""

    RESIDENT = "resident"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"


# Allowed roles for a gate are always a flat frozenset of Role members.
RoleSet = frozenset[Role]


def role_set(*roles: Role) -> RoleSet:
    """Build a RoleSet; anything that is not a single Role (e.g. a nested list) is rejected."""
    for r in roles:
        if not isinstance(r, Role):
            raise TypeError(f"role_set() expects Role members, got {type(r).__name__}")
    return frozenset(roles)


ADMIN_ROLES: RoleSet = role_set(Role.ADMIN, Role.SUPERADMIN)
SUPERADMIN_ROLES: RoleSet = role_set(Role.SUPERADMIN)
ALL_ROLES: RoleSet = frozenset(Role)


@dataclass(frozen=True, slots=True)
class AccessClaims:
    user_id: int
    email: str
    role: Role
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True, slots=True)
class RefreshClaims:
    user_id: int
    jti: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True, slots=True)
class TokenPair:
    access_token: str
    refresh_token: str


def utcnow() -> datetime:
    """Current UTC time; every issue/verify call goes through here unless given `now`."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from backends that drop tzinfo (SQLite)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password for storage. Do not store plain passwords."""
    # bcrypt has a 72-byte limit; truncate to avoid errors (validation already limits length).
    pw_bytes = plain_password.encode("utf-8")[:72]
    return bcrypt.hashpw(pw_bytes, bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain_password: str, hashed: str) -> bool:
    """Verify a plain password against a stored hash."""
    pw_bytes = plain_password.encode("utf-8")[:72]
    try:
        return bcrypt.checkpw(pw_bytes, hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


@lru_cache(maxsize=1)
def dummy_password_hash() -> str:
    """Hash checked against when the email is unknown, so both paths cost one bcrypt round."""
    return hash_password(uuid.uuid4().hex)


def issue_access_token(user: "User", now: datetime | None = None) -> str:
    """Create a short-lived access JWT with sub, email, role, type, iat and exp."""
    now = now or utcnow()
    expire = now + timedelta(minutes=settings.JWT_ACCESS_EXPIRE_MINUTES)
    payload: dict[str, Any] = {
        "sub": str(user.id),
        "email": user.email,
        "role": Role(user.role).value,
        "type": ACCESS_TOKEN_TYPE,
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(
        payload,
        settings.JWT_SECRET.get_secret_value(),
        algorithm=settings.JWT_ALGORITHM,
    )


def issue_refresh_token(
    user: "User",
    now: datetime | None = None,
    jti: str | None = None,
) -> str:
    """Create a long-lived refresh JWT signed with the refresh secret."""
    now = now or utcnow()
    expire = now + timedelta(days=settings.JWT_REFRESH_EXPIRE_DAYS)
    payload: dict[str, Any] = {
        "sub": str(user.id),
        "type": REFRESH_TOKEN_TYPE,
        "jti": jti or uuid.uuid4().hex,
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(
        payload,
        settings.JWT_REFRESH_SECRET.get_secret_value(),
        algorithm=settings.JWT_ALGORITHM,
    )


def _decode(token: str, secret: str, expected_type: str, now: datetime) -> dict[str, Any]:
    """
    Check signature, structure, expiry and token class; return the raw payload.

    Expiry is checked here against `now` rather than by PyJWT so callers can pin the clock.
    A token is expired once now >= exp.
    """
    if not token or token.count(".") != 2:
        raise TokenMalformedError()
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[settings.JWT_ALGORITHM],
            options={
                "verify_exp": False,
                "verify_iat": False,
                "require": ["sub", "type", "iat", "exp"],
            },
        )
    except jwt.InvalidSignatureError as e:
        raise TokenInvalidError() from e
    except jwt.MissingRequiredClaimError as e:
        raise TokenMalformedError("Token is missing required claims.") from e
    except jwt.DecodeError as e:
        raise TokenMalformedError() from e
    except jwt.PyJWTError as e:
        raise TokenInvalidError() from e

    try:
        exp = int(payload["exp"])
        iat = int(payload["iat"])
    except (TypeError, ValueError) as e:
        raise TokenMalformedError("Token timestamps are not integers.") from e
    if now.timestamp() >= exp:
        raise TokenExpiredError()
    if payload.get("type") != expected_type:
        raise TokenInvalidError("Token type mismatch.")
    payload["exp"] = exp
    payload["iat"] = iat
    return payload


def _user_id(payload: dict[str, Any]) -> int:
    try:
        return int(payload["sub"])
    except (TypeError, ValueError) as e:
        raise TokenInvalidError("Invalid token payload.") from e


def verify_access_token(token: str, now: datetime | None = None) -> AccessClaims:
    """Validate an access token. Raises TokenMalformedError, TokenInvalidError or TokenExpiredError."""
    payload = _decode(
        token,
        settings.JWT_SECRET.get_secret_value(),
        ACCESS_TOKEN_TYPE,
        now or utcnow(),
    )
    try:
        role = Role(payload.get("role"))
    except ValueError as e:
        raise TokenInvalidError("Invalid token payload.") from e
    email = payload.get("email")
    if not isinstance(email, str) or not email:
        raise TokenInvalidError("Invalid token payload.")
    return AccessClaims(
        user_id=_user_id(payload),
        email=email,
        role=role,
        issued_at=datetime.fromtimestamp(payload["iat"], tz=UTC),
        expires_at=datetime.fromtimestamp(payload["exp"], tz=UTC),
    )


def verify_refresh_token(token: str, now: datetime | None = None) -> RefreshClaims:
    """Validate a refresh token against the refresh secret."""
    payload = _decode(
        token,
        settings.JWT_REFRESH_SECRET.get_secret_value(),
        REFRESH_TOKEN_TYPE,
        now or utcnow(),
    )
    jti = payload.get("jti")
    if not isinstance(jti, str) or not jti:
        raise TokenInvalidError("Invalid token payload.")
    return RefreshClaims(
        user_id=_user_id(payload),
        jti=jti,
        issued_at=datetime.fromtimestamp(payload["iat"], tz=UTC),
        expires_at=datetime.fromtimestamp(payload["exp"], tz=UTC),
    )
