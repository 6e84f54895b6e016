"""Login, token refresh, logout and password change on top of the credential store."""

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from pgdesk.core.exceptions import (
    AuthenticationError,
    MissingTokenError,
    RefreshExhaustedError,
    TokenInvalidError,
    UserNotFoundError,
)
from pgdesk.core.security import (
    TokenPair,
    issue_access_token,
    utcnow,
    verify_refresh_token,
)
from pgdesk.models import User
from pgdesk.services import tokens
from pgdesk.services.credentials import CredentialStore, password_changed_after

if TYPE_CHECKING:
    from pgdesk.core.config import Settings

logger = logging.getLogger(__name__)


class AuthService:
    """Session lifecycle operations. One instance per request (it holds the DB session)."""

    def __init__(self, db: Session, settings: "Settings") -> None:
        self.db = db
        self.settings = settings
        self.credentials = CredentialStore(db, settings)

    def login(self, email: str, password: str, now: datetime | None = None) -> tuple[User, TokenPair]:
        now = now or utcnow()
        user = self.credentials.authenticate(email, password, now=now)
        pair = tokens.issue_token_pair(self.db, user, now=now)
        logger.info("Login succeeded user_id=%s role=%s", user.id, user.role)
        return user, pair

    def refresh(self, refresh_token: str, now: datetime | None = None) -> tuple[User, TokenPair]:
        """
        Exchange a refresh token for a new pair (the old refresh token is consumed).

        Every failure surfaces as RefreshExhaustedError.
        """
        now = now or utcnow()
        try:
            claims = verify_refresh_token(refresh_token, now=now)
            user = self.credentials.get(claims.user_id)
        except (AuthenticationError, UserNotFoundError) as e:
            logger.info("Refresh rejected: %s", e.message)
            raise RefreshExhaustedError() from e

        if not user.is_active:
            tokens.revoke_all_for_user(self.db, user.id, now)
            self.db.commit()
            raise RefreshExhaustedError("User not found or inactive.")
        if password_changed_after(user, claims.issued_at):
            raise RefreshExhaustedError("User recently changed password. Please log in again.")

        rotated = tokens.rotate_refresh_token(self.db, user, refresh_token, now)
        pair = TokenPair(
            access_token=issue_access_token(user, now=now),
            refresh_token=rotated.refresh_token,
        )
        return user, pair

    def logout(self, user: User | None, refresh_token: str | None = None) -> None:
        """
        Revoke the given refresh token.

        Works without a live access token: the refresh token then authenticates
        the call by itself, so a session idle past its access expiry can still
        be ended server-side.
        """
        if user is None and not refresh_token:
            raise MissingTokenError()
        if not refresh_token:
            logger.info("Logout user_id=%s", user.id)
            return
        owner_id = user.id if user is not None else None
        revoked = tokens.revoke_refresh_token_best_effort(self.db, refresh_token, owner_id)
        if user is None and not revoked:
            raise TokenInvalidError("Invalid or already revoked refresh token.")
        logger.info("Logout user_id=%s refresh_revoked=%s", owner_id, revoked)

    def change_password(
        self,
        user: User,
        current_password: str,
        new_password: str,
        now: datetime | None = None,
    ) -> TokenPair:
        """Change the password, revoke every refresh token, and hand back a fresh pair."""
        now = now or utcnow()
        self.credentials.change_password(user, current_password, new_password, now=now)
        tokens.revoke_all_for_user(self.db, user.id, now)
        self.db.commit()
        return tokens.issue_token_pair(self.db, user, now=now)

    def set_active(self, user: User, is_active: bool) -> User:
        self.credentials.set_active(user, is_active)
        if not is_active:
            tokens.revoke_all_for_user(self.db, user.id)
            self.db.commit()
        return user
