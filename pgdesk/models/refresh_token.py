"""ORM model for issued refresh tokens (rotation and revocation)."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, func

from pgdesk.models.base import Base


class RefreshToken(Base):
    """
    One row per refresh JWT ever issued, keyed by its jti.

    The raw token is never stored; token_hash is its sha256. A rotated token has
    both revoked_at and replaced_by set.
    """

    __tablename__ = "refresh_tokens"

    jti = Column(String(64), primary_key=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token_hash = Column(String(64), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    replaced_by = Column(String(64), nullable=True)
