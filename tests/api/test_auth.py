"""Tests for authentication routes and the protected-request pipeline."""

import time
from functools import partial
from typing import Generator

import pytest
from fastapi.testclient import TestClient

from storeauth.auth import PersistenceUnavailable, Role, TokenService, hash_password
from storeauth.web.main import create_app
from storeauth.web.settings import APISettings

# Test constants
TEST_JWT_SECRET = "test-secret-key-for-testing-only-do-not-use-in-production"
TEST_PASSWORD = "correct-horse-battery"
SEVEN_DAYS = 7 * 24 * 3600
CLIENT_IP = "testclient"


class TestRegister:
    """Tests for POST /auth/register."""

    def test_register_creates_user(self, test_app: TestClient):
        response = test_app.post(
            "/auth/register", json={"email": "New@Example.com", "password": TEST_PASSWORD}
        )

        assert response.status_code == 201
        data = response.json()
        assert data["email"] == "new@example.com"
        assert data["role"] == "user"
        assert data["is_active"] is True
        assert "password_hash" not in data

    def test_register_duplicate_email(self, test_app: TestClient, seed_identity):
        seed_identity("owner@example.com")

        response = test_app.post(
            "/auth/register", json={"email": "OWNER@example.com", "password": TEST_PASSWORD}
        )

        assert response.status_code == 409
        assert response.json()["error_type"] == "duplicate_identity"

    def test_register_short_password(self, test_app: TestClient):
        response = test_app.post(
            "/auth/register", json={"email": "a@example.com", "password": "short"}
        )
        assert response.status_code == 422

    def test_register_password_over_bcrypt_limit(self, test_app: TestClient):
        response = test_app.post(
            "/auth/register", json={"email": "a@example.com", "password": "x" * 73}
        )
        assert response.status_code == 422

    def test_register_invalid_email(self, test_app: TestClient):
        response = test_app.post(
            "/auth/register", json={"email": "not-an-email", "password": TEST_PASSWORD}
        )
        assert response.status_code == 422


class TestLogin:
    """Tests for POST /auth/login."""

    def test_login_success(self, test_app: TestClient, seed_identity):
        seed_identity("owner@example.com")

        response = test_app.post(
            "/auth/login", json={"email": "Owner@Example.com", "password": TEST_PASSWORD}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["token_type"] == "bearer"
        assert data["expires_in"] == SEVEN_DAYS
        assert data["user"]["email"] == "owner@example.com"
        assert "password_hash" not in data["user"]
        assert "token" in response.cookies
        assert "httponly" in response.headers["set-cookie"].lower()

    def test_login_wrong_password(self, test_app: TestClient, seed_identity):
        seed_identity("owner@example.com")

        response = test_app.post(
            "/auth/login", json={"email": "owner@example.com", "password": "wrong-password"}
        )

        assert response.status_code == 401
        assert response.json()["reason"] == "invalid_credentials"

    def test_unknown_email_looks_like_wrong_password(self, test_app: TestClient, seed_identity):
        seed_identity("owner@example.com")

        unknown = test_app.post(
            "/auth/login", json={"email": "nobody@example.com", "password": "wrong-password"}
        )
        wrong = test_app.post(
            "/auth/login", json={"email": "owner@example.com", "password": "wrong-password"}
        )

        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json() == wrong.json()

    def test_login_succeeds_when_last_active_update_fails(
        self, test_app: TestClient, seed_identity, monkeypatch
    ):
        seed_identity("owner@example.com")

        async def unavailable(identity_id, when=None):
            raise PersistenceUnavailable()

        monkeypatch.setattr(test_app.app.state.identities, "touch_last_active", unavailable)

        response = test_app.post(
            "/auth/login", json={"email": "owner@example.com", "password": TEST_PASSWORD}
        )

        assert response.status_code == 200
        assert response.json()["access_token"]

    def test_login_deactivated_account(self, test_app: TestClient, seed_identity):
        identity = seed_identity("owner@example.com")
        repo = test_app.app.state.identities
        test_app.portal.call(repo.set_active, identity.id, False)

        response = test_app.post(
            "/auth/login", json={"email": "owner@example.com", "password": TEST_PASSWORD}
        )

        assert response.status_code == 403
        assert response.json()["reason"] == "account_deactivated"


class TestLockout:
    """Tests for IP and account lockout on the login route."""

    def test_ip_blocked_after_ten_failures(self, test_app: TestClient, seed_identity):
        """Test that the 11th attempt is refused even with the correct password."""
        seed_identity("owner@example.com")
        for i in range(10):
            response = test_app.post(
                "/auth/login", json={"email": f"nobody{i}@example.com", "password": "nope-nope"}
            )
            assert response.status_code == 401

        response = test_app.post(
            "/auth/login", json={"email": "owner@example.com", "password": TEST_PASSWORD}
        )

        assert response.status_code == 429
        assert response.json()["reason"] == "ip_blocked"
        assert int(response.headers["Retry-After"]) > 0

    def test_blocked_ip_cannot_use_valid_token(
        self, test_app: TestClient, seed_identity, login_headers
    ):
        seed_identity("owner@example.com")
        headers = login_headers("owner@example.com")
        for i in range(10):
            test_app.post(
                "/auth/login", json={"email": f"nobody{i}@example.com", "password": "nope-nope"}
            )

        response = test_app.get("/auth/me", headers=headers)

        assert response.status_code == 429

    def test_account_locked_after_five_failures(self, test_app: TestClient, seed_identity):
        seed_identity("owner@example.com")
        seed_identity("other@example.com")
        for _ in range(5):
            test_app.post(
                "/auth/login", json={"email": "owner@example.com", "password": "wrong-password"}
            )

        locked = test_app.post(
            "/auth/login", json={"email": "owner@example.com", "password": TEST_PASSWORD}
        )
        other = test_app.post(
            "/auth/login", json={"email": "other@example.com", "password": TEST_PASSWORD}
        )

        assert locked.status_code == 429
        assert locked.json()["reason"] == "account_locked"
        assert other.status_code == 200

    def test_ip_threshold_follows_settings(self, api_settings: APISettings):
        app = create_app(api_settings.model_copy(update={"lockout_threshold": 3}))
        with TestClient(app) as client:
            for i in range(3):
                response = client.post(
                    "/auth/login", json={"email": f"nobody{i}@example.com", "password": "nope-nope"}
                )
                assert response.status_code == 401

            response = client.post(
                "/auth/login", json={"email": "nobody@example.com", "password": "nope-nope"}
            )

        assert response.status_code == 429
        assert response.json()["reason"] == "ip_blocked"

    def test_ip_lockout_disabled_in_settings(self, api_settings: APISettings):
        app = create_app(api_settings.model_copy(update={"enable_ip_lockout": False}))
        with TestClient(app) as client:
            for i in range(12):
                response = client.post(
                    "/auth/login", json={"email": f"nobody{i}@example.com", "password": "nope-nope"}
                )
                assert response.status_code == 401

    def test_success_resets_counters(self, test_app: TestClient, seed_identity):
        seed_identity("owner@example.com")
        for _ in range(2):
            for _ in range(4):
                response = test_app.post(
                    "/auth/login",
                    json={"email": "owner@example.com", "password": "wrong-password"},
                )
                assert response.status_code == 401
            response = test_app.post(
                "/auth/login", json={"email": "owner@example.com", "password": TEST_PASSWORD}
            )
            assert response.status_code == 200


@pytest.fixture
def clocked_app(api_settings: APISettings, clock) -> Generator[TestClient, None, None]:
    """Provide an application whose lockout windows and tokens follow the fake clock."""
    app = create_app(api_settings, clock=clock)
    with TestClient(app) as client:
        yield client


class TestRepeatedWrongPassword:
    """Ten wrong passwords for one account from one source, then the right one."""

    def _login(self, client: TestClient, password: str):
        return client.post("/auth/login", json={"email": "owner@example.com", "password": password})

    def test_account_lock_holds_after_ip_window(self, clocked_app: TestClient, clock):
        """
        Test how the two guards interact.

        The account locks at the fifth failure, so attempts six to ten never
        reach the password check and the IP counter stops at five. The IP
        counter lapses after an hour; the account lock holds for two.
        """
        repo = clocked_app.app.state.identities
        ip_guard = clocked_app.app.state.ip_guard
        password_hash = hash_password(TEST_PASSWORD, rounds=4)
        clocked_app.portal.call(partial(repo.create_identity, "owner@example.com", password_hash))

        statuses = [self._login(clocked_app, "wrong-password").status_code for _ in range(10)]
        assert statuses == [401] * 5 + [429] * 5

        response = self._login(clocked_app, TEST_PASSWORD)
        assert response.status_code == 429
        assert response.json()["reason"] == "account_locked"
        assert 0 < int(response.headers["Retry-After"]) <= 7201
        assert clocked_app.portal.call(ip_guard.failure_count, CLIENT_IP) == 5

        clock.advance(3601)
        assert clocked_app.portal.call(ip_guard.failure_count, CLIENT_IP) == 0
        response = self._login(clocked_app, TEST_PASSWORD)
        assert response.status_code == 429
        assert response.json()["reason"] == "account_locked"

        clock.advance(3600)
        assert self._login(clocked_app, TEST_PASSWORD).status_code == 200

    def test_ip_lock_without_account_lock(self, api_settings: APISettings):
        """Test that with account lockout off the same scenario trips the IP guard."""
        app = create_app(api_settings.model_copy(update={"enable_account_lockout": False}))
        with TestClient(app) as client:
            client.portal.call(
                partial(
                    app.state.identities.create_identity,
                    "owner@example.com",
                    hash_password(TEST_PASSWORD, rounds=4),
                )
            )
            statuses = [self._login(client, "wrong-password").status_code for _ in range(10)]
            response = self._login(client, TEST_PASSWORD)

        assert statuses == [401] * 10
        assert response.status_code == 429
        assert response.json()["reason"] == "ip_blocked"


class TestProtectedRequests:
    """Tests for GET /auth/me through the authentication pipeline."""

    def test_me_with_bearer_token(self, test_app: TestClient, seed_identity, login_headers):
        seed_identity("owner@example.com")
        headers = login_headers("owner@example.com")

        response = test_app.get("/auth/me", headers=headers)

        assert response.status_code == 200
        assert response.json()["email"] == "owner@example.com"

    def test_me_with_cookie(self, test_app: TestClient, seed_identity):
        seed_identity("owner@example.com")
        test_app.post("/auth/login", json={"email": "owner@example.com", "password": TEST_PASSWORD})

        response = test_app.get("/auth/me")

        assert response.status_code == 200

    def test_me_without_token(self, test_app: TestClient):
        response = test_app.get("/auth/me")

        assert response.status_code == 401
        assert response.json()["reason"] == "missing_token"
        assert response.json()["requires_auth"] is True
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_me_with_malformed_token(self, test_app: TestClient):
        response = test_app.get("/auth/me", headers={"Authorization": "Bearer garbage"})

        assert response.status_code == 401
        assert response.json()["reason"] == "token_malformed"

    def test_me_with_expired_token(self, test_app: TestClient, seed_identity):
        identity = seed_identity("owner@example.com")
        past = TokenService(TEST_JWT_SECRET, clock=lambda: time.time() - SEVEN_DAYS - 60)
        token = past.issue(identity.id, Role.USER)

        response = test_app.get("/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["reason"] == "token_expired"

    def test_deactivated_identity_rejected(self, test_app: TestClient, seed_identity, login_headers):
        identity = seed_identity("owner@example.com")
        headers = login_headers("owner@example.com")
        test_app.portal.call(test_app.app.state.identities.set_active, identity.id, False)

        response = test_app.get("/auth/me", headers=headers)

        assert response.status_code == 403
        assert response.json()["reason"] == "account_deactivated"


class TestLogout:
    """Tests for POST /auth/logout."""

    def test_logout_revokes_token(self, test_app: TestClient, seed_identity, login_headers):
        seed_identity("owner@example.com")
        headers = login_headers("owner@example.com")

        response = test_app.post("/auth/logout", headers=headers)
        assert response.status_code == 204

        response = test_app.get("/auth/me", headers=headers)
        assert response.status_code == 401
        assert response.json()["reason"] == "token_revoked"

    def test_logout_twice(self, test_app: TestClient, seed_identity, login_headers):
        seed_identity("owner@example.com")
        headers = login_headers("owner@example.com")

        assert test_app.post("/auth/logout", headers=headers).status_code == 204
        assert test_app.post("/auth/logout", headers=headers).status_code == 204

    def test_logout_without_token(self, test_app: TestClient):
        assert test_app.post("/auth/logout").status_code == 204

    def test_logout_clears_cookie(self, test_app: TestClient, seed_identity):
        seed_identity("owner@example.com")
        test_app.post("/auth/login", json={"email": "owner@example.com", "password": TEST_PASSWORD})

        response = test_app.post("/auth/logout")

        assert response.status_code == 204
        assert 'token=""' in response.headers["set-cookie"]
        assert test_app.get("/auth/me").status_code == 401


class TestRoleGate:
    """End-to-end role checks on an admin-only route."""

    def test_promotion_takes_effect_on_existing_token(
        self, test_app: TestClient, seed_identity, login_headers
    ):
        """Test register, login, forbidden, promote, then allowed with the same token."""
        response = test_app.post(
            "/auth/register", json={"email": "clerk@example.com", "password": TEST_PASSWORD}
        )
        identity_id = response.json()["id"]
        headers = login_headers("clerk@example.com")

        response = test_app.get("/users", headers=headers)
        assert response.status_code == 403
        assert response.json()["reason"] == "insufficient_role"

        test_app.portal.call(test_app.app.state.identities.update_role, identity_id, Role.ADMIN)

        assert test_app.get("/users", headers=headers).status_code == 200
        assert test_app.get("/users", headers=login_headers("clerk@example.com")).status_code == 200
