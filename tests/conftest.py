"""
Test configuration and fixtures for the two-factor auth service tests.
"""

import os

os.environ.setdefault("TWOFACTOR_BCRYPT_ROUNDS", "4")
os.environ.setdefault("TWOFACTOR_DATABASE_URL", "sqlite://")
os.environ.setdefault("TWOFACTOR_JWT_SECRET_KEY", "test-secret")

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from twofactor.config import settings
from twofactor.models.account import Account
from twofactor.models.base import Base
from twofactor.services.clock import Clock
from twofactor.services.login import LoginFlow
from twofactor.services.provisioning import ProvisioningService
from twofactor.services.security import hash_password
from twofactor.services.tokens import TokenService
from twofactor.services.totp import TotpEngine, compute_code, counter_at

PASSWORD = "correct-horse-battery"
DEMO_SECRET = "JBSWY3DPEHPK3PXP"
DEMO_CODES = ["AB12CD", "EF34GH", "IJ56KL", "MN78OP", "QR90ST", "UV12WX", "YZ34AB", "CD56EF", "GH78IJ", "KL90MN"]


class FixedClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current = self.current + timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FixedClock(datetime(2026, 1, 5, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture(scope="function")
def db_session():
    """Create an isolated test database session for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)

    Session = sessionmaker(bind=engine, autoflush=False)
    session = Session()

    yield session

    session.close()
    Base.metadata.drop_all(engine)


@pytest.fixture
def tokens(clock):
    return TokenService(settings, clock)


@pytest.fixture
def totp(clock):
    return TotpEngine(clock, settings.totp_valid_window)


@pytest.fixture
def flow(tokens, totp, clock):
    return LoginFlow(tokens, totp, clock, settings)


@pytest.fixture
def provisioning(totp):
    return ProvisioningService(totp, settings, qr_renderer=lambda uri: b"QR:" + uri.encode("utf-8"))


@pytest.fixture
def current_code(clock):
    """Code an authenticator app would show right now for a given secret."""

    def _code(secret: str = DEMO_SECRET) -> str:
        return compute_code(secret, counter_at(clock.timestamp()))

    return _code


@pytest.fixture
def wrong_code(clock):
    """A well-formed code that falls outside the whole verification window."""

    def _code(secret: str = DEMO_SECRET) -> str:
        current = counter_at(clock.timestamp())
        window = settings.totp_valid_window
        accepted = {compute_code(secret, c) for c in range(current - window, current + window + 1)}
        return next(c for c in ("000000", "111111", "222222", "333333") if c not in accepted)

    return _code


@pytest.fixture
def make_account(db_session):
    """Factory for persisted accounts, optionally with 2FA already enabled."""

    def _make(
        email: str = "user@example.com",
        username: str = "user",
        two_factor: bool = False,
        failed_login_count: int = 0,
    ) -> Account:
        account = Account(
            email=email,
            username=username,
            password_hash=hash_password(PASSWORD),
            two_factor_enabled=two_factor,
            two_factor_secret=DEMO_SECRET if two_factor else None,
            two_factor_recovery_codes=list(DEMO_CODES) if two_factor else [],
            failed_login_count=failed_login_count,
        )
        db_session.add(account)
        db_session.commit()
        db_session.refresh(account)
        return account

    return _make


@pytest.fixture
def client(db_session, clock):
    from twofactor.api.deps import get_clock, get_db
    from twofactor.main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock

    yield TestClient(app)

    app.dependency_overrides.clear()
