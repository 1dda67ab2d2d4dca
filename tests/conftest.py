"""Pytest configuration and fixtures."""

import os

# Must be set before prepaidly.config is imported
os.environ.setdefault("ENCRYPTION_PASSWORD", "test-encryption-password")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENABLE_TOKEN_REFRESH_SCHEDULER", "false")
os.environ.setdefault("XERO_CLIENT_ID", "test-client-id")
os.environ.setdefault("XERO_CLIENT_SECRET", "test-client-secret")

from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import prepaidly.models  # noqa: F401
from prepaidly.database import Base
from prepaidly.models import ConnectionStatus, User, XeroConnection
from prepaidly.schemas.schedule import ScheduleCreate
from prepaidly.services.encryption_service import EncryptionService
from prepaidly.services.oauth_state_cache import OAuthStateCache
from prepaidly.services.xero_oauth_service import XeroOAuthService

from helpers import FakeXeroClient, FixedClock, MonotonicClock


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()

@pytest.fixture
def db_session(engine):
    """Session on a fresh in-memory database."""
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    yield session
    session.close()

@pytest.fixture
def clock():
    return FixedClock()

@pytest.fixture
def monotonic_clock():
    return MonotonicClock()

@pytest.fixture
def encryption():
    # Fewer KDF rounds keep the suite fast
    return EncryptionService("test-encryption-password", iterations=1000)

@pytest.fixture
def state_cache(monotonic_clock):
    return OAuthStateCache(clock=monotonic_clock)

@pytest.fixture
def fake_xero():
    return FakeXeroClient()

@pytest.fixture
def oauth_service(db_session, fake_xero, encryption, state_cache, clock):
    return XeroOAuthService(
        db_session,
        client=fake_xero,
        encryption=encryption,
        state_cache=state_cache,
        clock=clock,
    )

@pytest.fixture
def user(db_session):
    user = User(email="demo@prepaidly.io")
    db_session.add(user)
    db_session.commit()
    return user

@pytest.fixture
def make_connection(db_session, encryption, clock, user):
    """Factory for stored connections with encrypted tokens."""

    def _make(
        tenant_id: str = "tenant-1",
        tenant_name: str = "Demo Company",
        access_token: str = "access-1",
        refresh_token: str = "refresh-1",
        expires_in_minutes: int = 30,
        status: ConnectionStatus = ConnectionStatus.CONNECTED,
        owner: User = None,
    ) -> XeroConnection:
        connection = XeroConnection(
            user_id=(owner or user).id,
            tenant_id=tenant_id,
            tenant_name=tenant_name,
            access_token=encryption.encrypt(access_token),
            refresh_token=encryption.encrypt(refresh_token),
            expires_at=clock() + timedelta(minutes=expires_in_minutes),
            connection_status=status,
            xero_connection_id=f"conn-{tenant_id}",
        )
        if status == ConnectionStatus.DISCONNECTED:
            connection.disconnect_reason = "invalid_grant"
        db_session.add(connection)
        db_session.commit()
        return connection

    return _make

@pytest.fixture
def schedule_request():
    """Factory for schedule creation requests."""

    def _make(**overrides) -> ScheduleCreate:
        values = dict(
            tenant_id="tenant-1",
            type="PREPAID",
            start_date=date(2025, 1, 1),
            end_date=date(2025, 3, 31),
            total_amount=Decimal("3000.00"),
            expense_acct_code="400",
            deferral_acct_code="620",
            contact_name="Acme Insurance",
            description="Annual insurance",
        )
        values.update(overrides)
        return ScheduleCreate(**values)

    return _make
