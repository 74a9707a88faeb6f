"""
tests/conftest.py -- Shared test fixtures for SessionGate.

This module provides:
  - FakeClock / RecordingEmailSender: deterministic collaborators
  - engine, otp_store: isolated stores on per-test SQLite files
  - rate_limiter: a fresh in-memory `limits` storage per test
  - auth_service: AuthService wired to the real stores with a 4-round bcrypt hasher
  - make_client: factory for a TestClient on the real app with a patched lifespan

Design: every store lives in a file under tmp_path rather than :memory:.
TestClient runs route handlers in a thread pool, and the concurrency tests
start their own threads; a file DB presents the same schema to every
connection in the pool.

The DEBUG env var must be set before any core/api import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# Set DEBUG before any core/api import so get_settings() can auto-generate
# SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app, wire_state
from auth.service import AuthService
from auth.store import RefreshTokenStore, UserStore, make_engine
from auth.tokens import BcryptPasswordHasher, TokenIssuer
from cache.limiter import RateLimiter
from cache.store import OTPStore, connect
from core.config import Settings

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters-long"


# ---------------------------------------------------------------------------
# Deterministic collaborators
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable stand-in for time.time that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingEmailSender:
    """EmailSender that keeps every (email, code) pair instead of sending."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    def send_otp(self, email: str, code: str) -> None:
        self.sent.append((email, code))

    def last_code(self, email: str) -> str:
        for recipient, code in reversed(self.sent):
            if recipient == email:
                return code
        raise AssertionError(f"no OTP sent to {email}")


def register_payload(**overrides) -> dict:
    payload = {
        "email": "a@x.com",
        "phone": "03001234567",
        "password": "Password123",
        "first_name": "Ayesha",
        "last_name": "Khan",
        "role": "customer",
    }
    payload.update(overrides)
    return payload


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'auth.db'}", timeout=5.0)
    yield eng
    eng.dispose()


@pytest.fixture
def user_store(engine) -> UserStore:
    return UserStore(engine)


@pytest.fixture
def refresh_token_store(engine) -> RefreshTokenStore:
    return RefreshTokenStore(engine)


@pytest.fixture
def otp_store(tmp_path, clock) -> Generator[OTPStore, None, None]:
    store = OTPStore(connect(tmp_path / "cache.db"), clock=clock)
    yield store
    store.close()


@pytest.fixture
def rate_limiter() -> RateLimiter:
    return RateLimiter()


@pytest.fixture(scope="session")
def hasher() -> BcryptPasswordHasher:
    return BcryptPasswordHasher(rounds=4)


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer(TEST_SECRET)


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def auth_service(user_store, refresh_token_store, otp_store, issuer, hasher, email_sender) -> AuthService:
    return AuthService(
        users=user_store,
        refresh_tokens=refresh_token_store,
        otps=otp_store,
        issuer=issuer,
        hasher=hasher,
        email_sender=email_sender,
        otp_length=6,
        otp_ttl_seconds=300,
    )


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, tmp_path, hasher, email_sender):
    """Return an async context manager that replaces the real lifespan.

    Wires per-test stores into app.state through the same wire_state() the
    production lifespan uses, so routes see isolated databases.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required for .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        eng = make_engine(f"sqlite:///{tmp_path / 'api_auth.db'}")
        otp_store = OTPStore(connect(tmp_path / "api_cache.db"))
        rate_limiter = RateLimiter()
        wire_state(
            app,
            settings,
            engine=eng,
            otp_store=otp_store,
            rate_limiter=rate_limiter,
            hasher=hasher,
            email_sender=email_sender,
        )
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()
        otp_store.close()
        eng.dispose()

    return test_lifespan


@pytest.fixture
def make_client(tmp_path, hasher, email_sender) -> Generator[Callable[..., TestClient], None, None]:
    """Yield a factory: make_client(**settings_overrides) -> started TestClient.

    The global limit defaults high so multi-step flows are not throttled;
    rate-limit tests pass their own low limits.
    """
    clients: list[TestClient] = []

    def factory(**overrides) -> TestClient:
        values = {
            "debug": True,
            "secret_key": TEST_SECRET,
            "rate_limit_requests_per_minute": 1000,
            "login_rate_limit_requests_per_minute": 100,
        }
        values.update(overrides)
        settings = Settings(**values)
        app.router.lifespan_context = _patch_lifespan(settings, tmp_path, hasher, email_sender)
        client = TestClient(app, raise_server_exceptions=True)
        client.__enter__()
        clients.append(client)
        return client

    yield factory

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def api_client(make_client) -> TestClient:
    return make_client()
