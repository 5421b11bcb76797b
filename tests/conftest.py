"""
Shared test fixtures.

Provides a FastAPI TestClient wired to:
  • a temporary SQLite database (via app lifespan)
  • a hand-driven clock (tests.mocks.clock.FakeClock)
  • an in-memory outbox instead of the email sender

Service-level tests that don't need HTTP use the `database` fixture,
which opens the same temporary database without starting the app.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app import db
from app.dependencies import get_clock, get_otp_sender
from app.main import app
from app.services.otp import OtpEngine
from app.services.resend_throttle import ResendThrottle
from app.services.resume_tokens import ResumeTokenService
from app.services.signups import SignupFlow
from tests.mocks import api
from tests.mocks.clock import FakeClock
from tests.mocks.mailer import Outbox


# ── Fixtures ───────────────────────────────────────────────────────────────


@pytest.fixture()
def _test_env(monkeypatch, tmp_path):
    """
    Point the app at a temp database and switch off the global limiter.

    Per-identity counters are wiped so previous tests don't pollute counts.
    """
    monkeypatch.setattr(db, "DB_PATH", str(tmp_path / "test.db"))

    from app.rate_limit import limiter as _limiter
    from app.rate_limit import signup_limiter

    monkeypatch.setattr(_limiter, "enabled", False)
    signup_limiter.reset()
    yield
    signup_limiter.reset()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def outbox() -> Outbox:
    return Outbox()


@pytest.fixture()
def client(_test_env, clock: FakeClock, outbox: Outbox) -> TestClient:
    """
    FastAPI TestClient with the fake clock and outbox installed.

    Uses a context manager so the lifespan runs (DB init/shutdown).
    """
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_otp_sender] = lambda: outbox

    with TestClient(app, raise_server_exceptions=False) as tc:
        yield tc

    app.dependency_overrides.clear()


@pytest.fixture()
async def database(_test_env):
    """Open the temp database directly, without the app."""
    await db.init_db()
    yield
    await db.close_db()


@pytest.fixture()
def tokens(clock: FakeClock) -> ResumeTokenService:
    return ResumeTokenService(clock=clock)


@pytest.fixture()
def otp_engine(clock: FakeClock, outbox: Outbox) -> OtpEngine:
    return OtpEngine(sender=outbox, clock=clock)


@pytest.fixture()
def throttle(clock: FakeClock) -> ResendThrottle:
    return ResendThrottle(clock=clock)


@pytest.fixture()
def flow(database, tokens, otp_engine, throttle, clock) -> SignupFlow:
    return SignupFlow(tokens=tokens, otp=otp_engine, throttle=throttle, clock=clock)


@pytest.fixture()
def registered(client: TestClient, outbox: Outbox) -> dict:
    """A fresh pending signup: its id, resume token and the code that was sent."""
    resp = api.register(client)
    assert resp.status_code == 201, resp.text
    body = resp.json()
    return {
        "user_id": body["userId"],
        "resume_token": body["resumeToken"],
        "email": api.DEFAULT_EMAIL,
        "otp": outbox.last_code_for(api.DEFAULT_EMAIL),
    }
