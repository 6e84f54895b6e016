"""Python client for the PGDesk API with session handling and silent token renewal."""

from pgdesk.client.api_client import ApiClient, ApiError, SessionExpiredError
from pgdesk.client.session import AuthSession

__all__ = ["ApiClient", "ApiError", "AuthSession", "SessionExpiredError"]
