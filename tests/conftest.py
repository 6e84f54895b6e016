"""Test environment: in-memory SQLite, fixed secrets, cheap bcrypt. Runs before any pgdesk import."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-access-secret")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret")
os.environ.setdefault("APP_ENV", "dev")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from pgdesk.core import security  # noqa: E402

security.BCRYPT_ROUNDS = 4
