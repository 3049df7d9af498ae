"""
Shared fixtures.

Services are built directly against in-memory stores with a frozen clock so
lockout windows and TOTP steps are deterministic. The `app` fixture builds
the Flask app on an in-memory SQLite database for the SQL store tests.
"""
from datetime import datetime, timedelta

import pyotp
import pytest

from app import create_app
from config import TestConfig
from models import db
from security.bruteforce import BruteForceGuard
from security.mfa import MFAService
from stores.memory import MemoryAttemptStore, MemoryAuditSink, MemoryMFAStore, MemoryPasswordHistory
from utils.timeutil import to_epoch

USER_ID = "user-1"
USER_EMAIL = "alice@example.com"
USER_PASSWORD = "Correct-Horse-9"


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeReauth:
    """Accepts USER_PASSWORD for any user and remembers who asked."""

    def __init__(self, password: str = USER_PASSWORD):
        self.password = password
        self.calls = []

    def __call__(self, user_id: str, password: str) -> bool:
        self.calls.append(user_id)
        return password == self.password


def totp_now(secret: str, clock: FrozenClock) -> str:
    return pyotp.TOTP(secret).at(to_epoch(clock.now))


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 3, 1, 12, 0, 0))


@pytest.fixture
def attempt_store():
    return MemoryAttemptStore()


@pytest.fixture
def guard(attempt_store, clock):
    return BruteForceGuard(attempt_store, clock=clock)


@pytest.fixture
def mfa_store():
    return MemoryMFAStore()


@pytest.fixture
def audit_sink():
    return MemoryAuditSink()


@pytest.fixture
def reauth():
    return FakeReauth()


@pytest.fixture
def mfa(mfa_store, audit_sink, reauth, clock):
    return MFAService(mfa_store, audit_sink, reauth, issuer="Test Issuer", clock=clock)


@pytest.fixture
def enabled_user(mfa, clock):
    """Enrolls USER_ID and confirms it; yields the enrollment result."""
    enrollment = mfa.enroll(USER_ID, USER_EMAIL)
    assert mfa.confirm_enrollment(USER_ID, totp_now(enrollment.secret, clock)).success
    return enrollment


@pytest.fixture
def history_store():
    return MemoryPasswordHistory()


@pytest.fixture
def app(clock, reauth):
    app = create_app(TestConfig, reauthenticate=reauth, clock=clock)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()
