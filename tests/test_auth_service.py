"""Tests for AuthService and refresh-token rotation against a real (SQLite) database."""

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

from pgdesk.core.exceptions import (
    InvalidCredentialsError,
    MissingTokenError,
    RefreshExhaustedError,
    TokenInvalidError,
)
from pgdesk.core.security import Role, verify_access_token, verify_refresh_token
from pgdesk.models import RefreshToken
from pgdesk.services import tokens
from pgdesk.services.auth import AuthService
from pgdesk.services.tokens import hash_token, revoke_refresh_token_best_effort
from support import DEFAULT_PASSWORD, DatabaseTestCase

T0 = datetime(2025, 10, 1, 8, 0, tzinfo=UTC)


class AuthServiceTestCase(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.user = self.create_user(role=Role.ADMIN, branch_id="branch-1")
        self.auth = AuthService(self.db, self.settings)

    def live_tokens(self) -> list[RefreshToken]:
        return (
            self.db.query(RefreshToken)
            .filter(RefreshToken.user_id == self.user.id, RefreshToken.revoked_at.is_(None))
            .all()
        )


class TestLogin(AuthServiceTestCase):
    def test_login_returns_pair_bound_to_user(self) -> None:
        user, pair = self.auth.login("admin@example.com", DEFAULT_PASSWORD, now=T0)
        access = verify_access_token(pair.access_token, now=T0)
        refresh = verify_refresh_token(pair.refresh_token, now=T0)
        self.assertEqual(access.user_id, user.id)
        self.assertEqual(access.email, "admin@example.com")
        self.assertEqual(access.role, Role.ADMIN)
        self.assertEqual(refresh.user_id, user.id)

        rec = self.db.get(RefreshToken, refresh.jti)
        self.assertIsNotNone(rec)
        self.assertEqual(rec.token_hash, hash_token(pair.refresh_token))
        self.assertNotEqual(rec.token_hash, pair.refresh_token)

    def test_concurrent_logins_get_independent_pairs(self) -> None:
        _, first = self.auth.login("admin@example.com", DEFAULT_PASSWORD, now=T0)
        _, second = self.auth.login("admin@example.com", DEFAULT_PASSWORD, now=T0)
        self.assertNotEqual(first.refresh_token, second.refresh_token)
        self.assertEqual(len(self.live_tokens()), 2)

    def test_wrong_password(self) -> None:
        with self.assertRaises(InvalidCredentialsError):
            self.auth.login("admin@example.com", "not-the-password", now=T0)
        self.assertEqual(self.live_tokens(), [])


class TestRefreshRotation(AuthServiceTestCase):
    def test_refresh_rotates(self) -> None:
        _, pair = self.auth.login("admin@example.com", DEFAULT_PASSWORD, now=T0)
        later = T0 + timedelta(minutes=20)
        user, renewed = self.auth.refresh(pair.refresh_token, now=later)

        self.assertEqual(user.id, self.user.id)
        self.assertNotEqual(renewed.refresh_token, pair.refresh_token)
        claims = verify_access_token(renewed.access_token, now=later)
        self.assertEqual(claims.issued_at, later)

        old = self.db.get(RefreshToken, verify_refresh_token(pair.refresh_token, now=T0).jti)
        new_jti = verify_refresh_token(renewed.refresh_token, now=later).jti
        self.assertIsNotNone(old.revoked_at)
        self.assertEqual(old.replaced_by, new_jti)
        self.assertEqual([t.jti for t in self.live_tokens()], [new_jti])

    def test_replayed_refresh_token_revokes_every_session(self) -> None:
        _, pair = self.auth.login("admin@example.com", DEFAULT_PASSWORD, now=T0)
        _, other_device = self.auth.login("admin@example.com", DEFAULT_PASSWORD, now=T0)
        self.auth.refresh(pair.refresh_token, now=T0 + timedelta(minutes=1))

        with self.assertRaises(RefreshExhaustedError):
            self.auth.refresh(pair.refresh_token, now=T0 + timedelta(minutes=2))
        self.assertEqual(self.live_tokens(), [])
        with self.assertRaises(RefreshExhaustedError):
            self.auth.refresh(other_device.refresh_token, now=T0 + timedelta(minutes=3))

    def test_concurrent_refresh_with_same_token_rotates_once(self) -> None:
        _, pair = self.auth.login("admin@example.com", DEFAULT_PASSWORD, now=T0)
        later = T0 + timedelta(minutes=1)
        first_db = self.SessionTesting()
        second_db = self.SessionTesting()
        self.addCleanup(first_db.close)
        self.addCleanup(second_db.close)

        real_hash_token = tokens.hash_token
        started = []
        winners = []

        def interleaved_hash_token(value: str) -> str:
            # The second request has read the row; let the first one finish before it writes.
            if not started:
                started.append(True)
                winners.append(AuthService(first_db, self.settings).refresh(pair.refresh_token, now=later))
            return real_hash_token(value)

        with patch.object(tokens, "hash_token", side_effect=interleaved_hash_token):
            with self.assertRaises(RefreshExhaustedError):
                AuthService(second_db, self.settings).refresh(pair.refresh_token, now=later)

        self.assertEqual(len(winners), 1)
        self.db.expire_all()
        old_jti = verify_refresh_token(pair.refresh_token, now=T0).jti
        rotated = self.db.query(RefreshToken).filter(RefreshToken.replaced_by.isnot(None)).all()
        self.assertEqual([t.jti for t in rotated], [old_jti])
        _, winning_pair = winners[0]
        winning_jti = verify_refresh_token(winning_pair.refresh_token, now=later).jti
        self.assertEqual(rotated[0].replaced_by, winning_jti)
        # Losing the race counts as reuse: the winner's chain is revoked too.
        self.assertEqual(self.live_tokens(), [])

    def test_expired_refresh_token(self) -> None:
        _, pair = self.auth.login("admin@example.com", DEFAULT_PASSWORD, now=T0)
        past_expiry = T0 + timedelta(days=self.settings.JWT_REFRESH_EXPIRE_DAYS, seconds=1)
        with self.assertRaises(RefreshExhaustedError):
            self.auth.refresh(pair.refresh_token, now=past_expiry)

    def test_access_token_cannot_refresh(self) -> None:
        _, pair = self.auth.login("admin@example.com", DEFAULT_PASSWORD, now=T0)
        with self.assertRaises(RefreshExhaustedError):
            self.auth.refresh(pair.access_token, now=T0)

    def test_garbage_refresh_token(self) -> None:
        with self.assertRaises(RefreshExhaustedError):
            self.auth.refresh("not-a-token", now=T0)

    def test_deactivated_user_cannot_refresh(self) -> None:
        _, pair = self.auth.login("admin@example.com", DEFAULT_PASSWORD, now=T0)
        self.auth.set_active(self.user, False)
        self.assertEqual(self.live_tokens(), [])
        with self.assertRaises(RefreshExhaustedError):
            self.auth.refresh(pair.refresh_token, now=T0 + timedelta(minutes=1))


class TestLogoutAndPasswordChange(AuthServiceTestCase):
    def test_logout_revokes_refresh_token(self) -> None:
        _, pair = self.auth.login("admin@example.com", DEFAULT_PASSWORD)
        self.auth.logout(self.user, pair.refresh_token)
        self.assertEqual(self.live_tokens(), [])
        with self.assertRaises(RefreshExhaustedError):
            self.auth.refresh(pair.refresh_token)

    def test_logout_by_refresh_token_alone(self) -> None:
        _, pair = self.auth.login("admin@example.com", DEFAULT_PASSWORD)
        self.auth.logout(None, pair.refresh_token)
        self.assertEqual(self.live_tokens(), [])
        with self.assertRaises(TokenInvalidError):
            self.auth.logout(None, pair.refresh_token)
        with self.assertRaises(MissingTokenError):
            self.auth.logout(None, None)

    def test_logout_ignores_foreign_refresh_token(self) -> None:
        other = self.create_user(email="other@example.com")
        _, theirs = self.auth.login("other@example.com", DEFAULT_PASSWORD)
        self.assertFalse(revoke_refresh_token_best_effort(self.db, theirs.refresh_token, self.user.id))
        user, _ = self.auth.refresh(theirs.refresh_token)
        self.assertEqual(user.id, other.id)

    def test_password_change_revokes_old_refresh_tokens(self) -> None:
        _, old_pair = self.auth.login("admin@example.com", DEFAULT_PASSWORD, now=T0)
        changed_at = T0 + timedelta(minutes=5)
        new_pair = self.auth.change_password(
            self.user, DEFAULT_PASSWORD, "brand-new-pass", now=changed_at
        )
        with self.assertRaises(RefreshExhaustedError):
            self.auth.refresh(old_pair.refresh_token, now=changed_at + timedelta(minutes=1))
        user, _ = self.auth.refresh(new_pair.refresh_token, now=changed_at + timedelta(minutes=1))
        self.assertEqual(user.id, self.user.id)
