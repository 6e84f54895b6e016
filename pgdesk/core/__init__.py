"""Core app configuration, database, security and errors."""

from pgdesk.core.config import get_settings, settings
from pgdesk.core.database import get_db

__all__ = ["get_settings", "settings", "get_db"]
