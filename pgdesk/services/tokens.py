"""Refresh-token persistence: issue, single-use rotation with replay detection, revocation."""

import hashlib
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from pgdesk.core.exceptions import PGDeskError, RefreshExhaustedError
from pgdesk.core.security import (
    TokenPair,
    as_utc,
    issue_access_token,
    issue_refresh_token,
    utcnow,
    verify_refresh_token,
)
from pgdesk.models import RefreshToken, User

logger = logging.getLogger(__name__)


def hash_token(token: str) -> str:
    # Lookup/consistency key only; the token itself is JWT-signed.
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class RotateResult:
    user_id: int
    old_jti: str
    new_jti: str
    refresh_token: str


def _store_refresh_token(
    db: Session,
    user: User,
    now: datetime,
    jti: str | None = None,
) -> tuple[str, str]:
    jti = jti or uuid.uuid4().hex
    token = issue_refresh_token(user, now=now, jti=jti)
    claims = verify_refresh_token(token, now=now)
    db.add(
        RefreshToken(
            jti=jti,
            user_id=user.id,
            token_hash=hash_token(token),
            expires_at=claims.expires_at,
            created_at=now,
        )
    )
    return jti, token


def issue_token_pair(db: Session, user: User, now: datetime | None = None) -> TokenPair:
    """Mint an access token and a stored refresh token for the user. Commits."""
    now = now or utcnow()
    _, refresh = _store_refresh_token(db, user, now)
    db.commit()
    return TokenPair(access_token=issue_access_token(user, now=now), refresh_token=refresh)


def revoke_all_for_user(db: Session, user_id: int, now: datetime | None = None) -> int:
    """Revoke every live refresh token of the user. Does not commit."""
    now = now or utcnow()
    return (
        db.query(RefreshToken)
        .filter(RefreshToken.user_id == user_id, RefreshToken.revoked_at.is_(None))
        .update({RefreshToken.revoked_at: now}, synchronize_session=False)
    )


def rotate_refresh_token(db: Session, user: User, refresh_token: str, now: datetime) -> RotateResult:
    """
    Consume a verified refresh token and mint its replacement.

    Presenting an already-rotated token is treated as replay and revokes all the
    user's sessions. Commits in every outcome.
    """
    claims = verify_refresh_token(refresh_token, now=now)
    rec = db.get(RefreshToken, claims.jti)
    if rec is None or rec.user_id != user.id:
        raise RefreshExhaustedError("Unknown refresh token.")

    if rec.revoked_at is not None:
        if rec.replaced_by:
            revoked = revoke_all_for_user(db, user.id, now)
            db.commit()
            logger.warning(
                "Refresh token replay detected user_id=%s jti=%s; revoked %s sessions",
                user.id,
                rec.jti,
                revoked,
            )
            raise RefreshExhaustedError("Refresh token reuse detected; all sessions revoked.")
        raise RefreshExhaustedError("Refresh token revoked.")

    if rec.token_hash != hash_token(refresh_token):
        revoke_all_for_user(db, user.id, now)
        db.commit()
        logger.warning("Refresh token hash mismatch user_id=%s jti=%s", user.id, rec.jti)
        raise RefreshExhaustedError("Refresh token mismatch; all sessions revoked.")

    expires_at = as_utc(rec.expires_at)
    if expires_at is not None and now >= expires_at:
        rec.revoked_at = now
        db.commit()
        raise RefreshExhaustedError("Refresh token expired.")

    # Consume with a conditional UPDATE so only one concurrent caller can win.
    new_jti = uuid.uuid4().hex
    consumed = (
        db.query(RefreshToken)
        .filter(RefreshToken.jti == rec.jti, RefreshToken.revoked_at.is_(None))
        .update(
            {RefreshToken.revoked_at: now, RefreshToken.replaced_by: new_jti},
            synchronize_session=False,
        )
    )
    if consumed != 1:
        db.rollback()
        revoked = revoke_all_for_user(db, user.id, now)
        db.commit()
        logger.warning(
            "Concurrent refresh token reuse user_id=%s jti=%s; revoked %s sessions",
            user.id,
            rec.jti,
            revoked,
        )
        raise RefreshExhaustedError("Refresh token reuse detected; all sessions revoked.")

    _, new_token = _store_refresh_token(db, user, now, jti=new_jti)
    db.commit()
    logger.info("Rotated refresh token user_id=%s old=%s new=%s", user.id, rec.jti, new_jti)
    return RotateResult(
        user_id=user.id,
        old_jti=rec.jti,
        new_jti=new_jti,
        refresh_token=new_token,
    )


def revoke_refresh_token_best_effort(
    db: Session,
    refresh_token: str,
    user_id: int | None = None,
) -> bool:
    """
    Revoke one refresh token; invalid tokens are ignored.

    With user_id, a token owned by someone else is ignored too. Without it the
    signed token alone proves ownership.
    """
    try:
        claims = verify_refresh_token(refresh_token)
    except PGDeskError:
        return False
    rec = db.get(RefreshToken, claims.jti)
    if rec is None or rec.revoked_at is not None:
        return False
    if user_id is not None and rec.user_id != user_id:
        return False
    rec.revoked_at = utcnow()
    db.commit()
    return True
