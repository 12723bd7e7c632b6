"""Shared pytest fixtures for all tests."""

from pathlib import Path
from typing import AsyncGenerator, Callable, Dict, List, Optional

import pytest
import pytest_asyncio

from storeauth.auth import (
    AuthConfig,
    Authenticator,
    Identity,
    InMemoryStore,
    LoginAttemptGuard,
    PersistenceUnavailable,
    Role,
    TokenRevocationStore,
    TokenService,
)
from storeauth.core.db import IdentityRepository

# Test constants
TEST_JWT_SECRET = "test-secret-key-for-testing-only-do-not-use-in-production"
START_TIME = 1_700_000_000.0


class FakeClock:
    """Manually advanced clock usable wherever a ``time.time`` callable is expected."""

    def __init__(self, start: float = START_TIME):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeIdentityStore:
    """In-memory identity lookup with switchable failure modes."""

    def __init__(self):
        self.identities: Dict[int, Identity] = {}
        self.unavailable = False
        self.fail_touch = False
        self.touched: List[int] = []

    def add(
        self,
        identity_id: int = 1,
        role: Role = Role.USER,
        is_active: bool = True,
        email_verified: bool = True,
        email: Optional[str] = None,
    ) -> Identity:
        identity = Identity(
            id=identity_id,
            email=email or f"user{identity_id}@example.com",
            role=role,
            is_active=is_active,
            email_verified=email_verified,
        )
        self.identities[identity_id] = identity
        return identity

    async def find_by_id(self, identity_id: int) -> Optional[Identity]:
        if self.unavailable:
            raise PersistenceUnavailable()
        return self.identities.get(identity_id)

    async def find_by_email(
        self, email: str, include_password_hash: bool = False
    ) -> Optional[Identity]:
        if self.unavailable:
            raise PersistenceUnavailable()
        for identity in self.identities.values():
            if identity.email == email:
                return identity
        return None

    async def touch_last_active(self, identity_id: int, when=None) -> None:
        if self.fail_touch:
            raise PersistenceUnavailable()
        self.touched.append(identity_id)


@pytest.fixture
def clock() -> FakeClock:
    """Provide a controllable clock starting at a fixed instant."""
    return FakeClock()


@pytest.fixture
def memory_store(clock: FakeClock) -> InMemoryStore:
    """Provide an in-memory state store driven by the fake clock."""
    return InMemoryStore(clock=clock)


@pytest.fixture
def token_service(clock: FakeClock) -> TokenService:
    """Provide a token service driven by the fake clock."""
    return TokenService(TEST_JWT_SECRET, clock=clock)


@pytest.fixture
def ip_guard(memory_store: InMemoryStore, clock: FakeClock) -> LoginAttemptGuard:
    """Provide an IP guard with the default 10 attempts per hour."""
    return LoginAttemptGuard(memory_store, max_attempts=10, window_seconds=3600, clock=clock)


@pytest.fixture
def revocations(memory_store: InMemoryStore, clock: FakeClock) -> TokenRevocationStore:
    """Provide a revocation store sharing the in-memory state store."""
    return TokenRevocationStore(memory_store, clock=clock)


@pytest.fixture
def identity_store() -> FakeIdentityStore:
    """Provide an in-memory identity lookup."""
    return FakeIdentityStore()


@pytest.fixture
def make_authenticator(
    token_service: TokenService,
    revocations: TokenRevocationStore,
    identity_store: FakeIdentityStore,
    ip_guard: LoginAttemptGuard,
) -> Callable[..., Authenticator]:
    """Provide a factory building an authenticator with config overrides."""

    def _make(**config) -> Authenticator:
        return Authenticator(
            AuthConfig(**config),
            tokens=token_service,
            revocations=revocations,
            identities=identity_store,
            ip_guard=ip_guard,
        )

    return _make


@pytest_asyncio.fixture
async def identity_repository(tmp_path: Path) -> AsyncGenerator[IdentityRepository, None]:
    """Provide a connected identity repository on a temporary database."""
    # WAL disabled in tests to avoid lock issues
    repo = await IdentityRepository.from_path(tmp_path / "test_storeauth.db", enable_wal=False)
    yield repo
    await repo.close()
