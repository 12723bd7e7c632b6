"""Shared pytest fixtures for API tests."""

from functools import partial
from pathlib import Path
from typing import Callable, Dict, Generator, List

import pytest
from fastapi.testclient import TestClient

from storeauth.auth import ActionPurpose, Identity, IssuedActionToken, Role, hash_password
from storeauth.web.main import create_app
from storeauth.web.settings import APISettings

# Test constants
TEST_JWT_SECRET = "test-secret-key-for-testing-only-do-not-use-in-production"
TEST_PASSWORD = "correct-horse-battery"


class RecordingDelivery:
    """Token delivery that keeps every issued token for the test to read."""

    def __init__(self):
        self.sent: List[IssuedActionToken] = []

    async def deliver(self, identity: Identity, issued: IssuedActionToken) -> None:
        self.sent.append(issued)

    def latest(self, purpose: ActionPurpose) -> str:
        return next(i.token for i in reversed(self.sent) if i.purpose is purpose)


@pytest.fixture
def api_settings(tmp_path: Path) -> APISettings:
    """Provide test API settings backed by a temporary database."""
    return APISettings(
        jwt_secret=TEST_JWT_SECRET,
        database_path=str(tmp_path / "test_api.db"),
        debug=True,  # Non-Secure cookies so the test client sends them back
        allowed_origins=["*"],
        log_requests=False,  # Reduce noise in tests
        log_level="WARNING",
        log_format="text",
    )


@pytest.fixture
def delivery() -> RecordingDelivery:
    """Provide a delivery that records email verification and reset tokens."""
    return RecordingDelivery()


@pytest.fixture
def test_app(
    api_settings: APISettings, delivery: RecordingDelivery
) -> Generator[TestClient, None, None]:
    """
    Provide a FastAPI TestClient for a freshly created application.

    Entering the client runs the lifespan, which opens the database and
    starts the sweeper.
    """
    app = create_app(api_settings, delivery=delivery)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client


@pytest.fixture
def seed_identity(test_app: TestClient) -> Callable[..., Identity]:
    """Provide a helper that inserts an identity directly through the repository."""

    def _seed(email: str, role: Role = Role.USER, password: str = TEST_PASSWORD) -> Identity:
        repo = test_app.app.state.identities
        return test_app.portal.call(
            partial(repo.create_identity, email, hash_password(password, rounds=4), role=role)
        )

    return _seed


@pytest.fixture
def login_headers(test_app: TestClient) -> Callable[..., Dict[str, str]]:
    """Provide a helper that logs in and returns an Authorization header."""

    def _login(email: str, password: str = TEST_PASSWORD) -> Dict[str, str]:
        response = test_app.post("/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        # Keep tests explicit about which credential they send
        test_app.cookies.clear()
        return {"Authorization": f"Bearer {response.json()['access_token']}"}

    return _login
