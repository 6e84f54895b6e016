"""SQLAlchemy ORM models."""

from pgdesk.models.base import Base
from pgdesk.models.refresh_token import RefreshToken
from pgdesk.models.user import User

__all__ = ["Base", "RefreshToken", "User"]
