"""
Shared test configuration and fixtures.

Every test gets a fresh in-memory SQLite database, a fixed clock, the built-in
rate configuration and a fake payment provider. No network, no Redis.
"""

import os

os.environ.pop("REDIS_URL", None)
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401
from app.database import Base, get_db
from app.domain.pricing.default_rates import DEFAULT_RATE_CONFIGURATION
from app.domain.pricing.rate_table import RateConfiguration
from app.domain.pricing.repository import get_rate_configuration
from app.domain.proposals.collaborators import SqlBookingStore, get_payment_provider
from app.domain.proposals.router import get_clock
from app.domain.proposals.service import ProposalService
from helpers import NOW, FakePaymentProvider, FixedClock


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
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def rate_config() -> RateConfiguration:
    return RateConfiguration.model_validate(
        {**DEFAULT_RATE_CONFIGURATION, "tax_rate": "0.091", "deposit_fraction": "0.5", "currency": "USD"}
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def payments() -> FakePaymentProvider:
    return FakePaymentProvider()


@pytest.fixture
def make_service(rate_config, clock, payments):
    """Build a ProposalService on a given session (for multi-session races)"""

    def _make(session, config=None):
        return ProposalService(
            session,
            config or rate_config,
            clock=clock,
            payment_provider=payments,
            booking_store=SqlBookingStore(session),
        )

    return _make


@pytest.fixture
def service(db_session, make_service) -> ProposalService:
    return make_service(db_session)


@pytest.fixture
def client(session_factory, rate_config, clock, payments):
    from app.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_rate_configuration] = lambda: rate_config
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_payment_provider] = lambda: payments
    yield TestClient(app)
    app.dependency_overrides.clear()
