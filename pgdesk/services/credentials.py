"""Credential store: user lookup, password checks, lockout, and account state changes."""

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from pgdesk.core.exceptions import (
    AccountDisabledError,
    AccountLockedError,
    AccountProtectedError,
    EmailAlreadyExistsError,
    InvalidCredentialsError,
    UserNotFoundError,
    ValidationError,
)
from pgdesk.core.security import (
    EMAIL_MAX_LEN,
    EMAIL_MIN_LEN,
    PASSWORD_MAX_LEN,
    PASSWORD_MIN_LEN,
    Role,
    as_utc,
    dummy_password_hash,
    hash_password,
    utcnow,
)
from pgdesk.core.security import verify_password as _check_password
from pgdesk.models import User

if TYPE_CHECKING:
    from pgdesk.core.config import Settings

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def validate_password(password: str) -> None:
    if not (PASSWORD_MIN_LEN <= len(password or "") <= PASSWORD_MAX_LEN):
        raise ValidationError(
            f"Password must be {PASSWORD_MIN_LEN}-{PASSWORD_MAX_LEN} characters."
        )


class CredentialStore:
    """
    Authoritative lookup and verification of user identity.

    Wraps a SQLAlchemy session. Methods that change state commit before returning.
    The password hash never leaves this class except through bcrypt.
    """

    def __init__(self, db: Session, settings: "Settings") -> None:
        self.db = db
        self.settings = settings

    def find_by_email(self, email: str) -> User:
        user = self.db.query(User).filter(User.email == normalize_email(email)).first()
        if user is None:
            raise UserNotFoundError()
        return user

    def get(self, user_id: int) -> User:
        user = self.db.get(User, user_id)
        if user is None:
            raise UserNotFoundError()
        return user

    def verify_password(self, user: User, plaintext: str) -> bool:
        return _check_password(plaintext, user.password_hash)

    def is_locked(self, user: User, now: datetime) -> bool:
        lock_until = as_utc(user.lock_until)
        return lock_until is not None and lock_until > now

    def authenticate(self, email: str, password: str, now: datetime | None = None) -> User:
        """
        Check credentials and update the lockout counters.

        Unknown email and wrong password raise the same InvalidCredentialsError.
        """
        now = now or utcnow()
        try:
            user = self.find_by_email(email)
        except UserNotFoundError:
            # Same bcrypt cost as a real check, so response time does not reveal the email.
            _check_password(password, dummy_password_hash())
            logger.info("Login failed: unknown email=%s", normalize_email(email))
            raise InvalidCredentialsError() from None

        if self.is_locked(user, now):
            logger.warning("Login rejected: account locked user_id=%s", user.id)
            raise AccountLockedError()

        if not self.verify_password(user, password):
            self._record_failed_login(user, now)
            raise InvalidCredentialsError()

        if not user.is_active:
            logger.info("Login rejected: account deactivated user_id=%s", user.id)
            raise AccountDisabledError()

        user.login_attempts = 0
        user.lock_until = None
        user.last_login_at = now
        self.db.commit()
        return user

    def _record_failed_login(self, user: User, now: datetime) -> None:
        user.login_attempts = (user.login_attempts or 0) + 1
        if user.login_attempts >= self.settings.MAX_LOGIN_ATTEMPTS:
            user.lock_until = now + timedelta(minutes=self.settings.LOCKOUT_MINUTES)
            user.login_attempts = 0
            self.db.commit()
            logger.warning(
                "Account locked after %s failed logins user_id=%s until=%s",
                self.settings.MAX_LOGIN_ATTEMPTS,
                user.id,
                user.lock_until.isoformat(),
            )
            raise AccountLockedError(
                "Account is locked due to multiple failed login attempts. "
                f"Please try again in {self.settings.LOCKOUT_MINUTES} minutes."
            )
        self.db.commit()
        logger.info("Login failed: wrong password user_id=%s attempts=%s", user.id, user.login_attempts)

    def create_user(
        self,
        email: str,
        password: str,
        role: Role = Role.RESIDENT,
        branch_id: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> User:
        email = normalize_email(email)
        if not (EMAIL_MIN_LEN <= len(email) <= EMAIL_MAX_LEN) or "@" not in email:
            raise ValidationError("Invalid email address.")
        validate_password(password)
        if self.db.query(User).filter(User.email == email).first() is not None:
            raise EmailAlreadyExistsError(email)
        user = User(
            email=email,
            password_hash=hash_password(password),
            role=Role(role).value,
            branch_id=branch_id,
            first_name=first_name,
            last_name=last_name,
            is_active=True,
            login_attempts=0,
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        logger.info("Created user id=%s role=%s", user.id, user.role)
        return user

    def set_active(self, user: User, is_active: bool) -> User:
        """Activate or deactivate. Superadmins cannot be deactivated."""
        if not is_active and user.role == Role.SUPERADMIN.value:
            raise AccountProtectedError()
        user.is_active = is_active
        self.db.commit()
        logger.info("User status changed id=%s is_active=%s", user.id, is_active)
        return user

    def unlock(self, user: User) -> User:
        """Clear a lockout and the failed-login counter."""
        user.login_attempts = 0
        user.lock_until = None
        self.db.commit()
        logger.info("User unlocked id=%s", user.id)
        return user

    def change_password(
        self,
        user: User,
        current_password: str,
        new_password: str,
        now: datetime | None = None,
    ) -> User:
        if not self.verify_password(user, current_password):
            raise InvalidCredentialsError("Current password is incorrect")
        validate_password(new_password)
        user.password_hash = hash_password(new_password)
        user.password_changed_at = now or utcnow()
        self.db.commit()
        logger.info("Password changed user_id=%s", user.id)
        return user


def password_changed_after(user: User, issued_at: datetime) -> bool:
    """True when the password changed after a token with this iat was issued (second precision)."""
    changed = as_utc(user.password_changed_at)
    if changed is None:
        return False
    return int(changed.timestamp()) > int(issued_at.timestamp())
