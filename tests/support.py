"""Shared test harness: per-test SQLite database, API client wiring, and a movable clock."""

import os
import tempfile
import unittest
from contextlib import ExitStack, contextmanager
from datetime import UTC, datetime, timedelta
from typing import Any, Iterator
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from pgdesk.core.config import get_settings
from pgdesk.api.deps import get_rate_limiter
from pgdesk.core.database import get_db
from pgdesk.core.ratelimit import RateLimiter
from pgdesk.core.security import Role
from pgdesk.main import app
from pgdesk.models import Base, User
from pgdesk.services.credentials import CredentialStore

DEFAULT_PASSWORD = "password123"

# Every module that reads the clock imports utcnow by name.
_CLOCK_TARGETS = (
    "pgdesk.core.security.utcnow",
    "pgdesk.services.credentials.utcnow",
    "pgdesk.services.tokens.utcnow",
    "pgdesk.services.auth.utcnow",
)


@contextmanager
def frozen_clock(at: datetime) -> Iterator[None]:
    """Pin every server-side clock read to `at`."""
    with ExitStack() as stack:
        for target in _CLOCK_TARGETS:
            stack.enter_context(patch(target, return_value=at))
        yield


def shifted(delta: timedelta) -> datetime:
    return datetime.now(UTC) + delta


class DatabaseTestCase(unittest.TestCase):
    """Fresh SQLite database file per test; each session gets its own connection."""

    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.engine = create_engine(
            f"sqlite:///{os.path.join(self._tmpdir.name, 'pgdesk-test.db')}",
            connect_args={"check_same_thread": False, "timeout": 15},
        )
        Base.metadata.create_all(self.engine)
        self.SessionTesting = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)
        self.db = self.SessionTesting()
        self.settings = get_settings()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()
        self._tmpdir.cleanup()

    def create_user(
        self,
        email: str = "admin@example.com",
        password: str = DEFAULT_PASSWORD,
        role: Role = Role.ADMIN,
        **kwargs: Any,
    ) -> User:
        return CredentialStore(self.db, self.settings).create_user(
            email=email, password=password, role=role, **kwargs
        )


class ApiTestCase(DatabaseTestCase):
    """DatabaseTestCase plus a TestClient whose get_db yields sessions on the test database."""

    def setUp(self) -> None:
        super().setUp()

        def override_get_db():
            db = self.SessionTesting()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        # Fresh limiter per test; tests that exercise limiting swap in a tighter one.
        self.limiter = RateLimiter(limit=1000, per_seconds=60)
        app.dependency_overrides[get_rate_limiter] = lambda: self.limiter
        self.client = TestClient(app, raise_server_exceptions=False)
        self.prefix = self.settings.API_V1_PREFIX

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        super().tearDown()

    def url(self, path: str) -> str:
        return f"{self.prefix}{path}"

    def login(self, email: str = "admin@example.com", password: str = DEFAULT_PASSWORD) -> dict[str, Any]:
        response = self.client.post(self.url("/auth/login"), json={"email": email, "password": password})
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()["data"]

    @staticmethod
    def bearer(token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}
