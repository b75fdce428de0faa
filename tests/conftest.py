# tests/conftest.py
"""
Pytest configuration and fixtures shared by the service and API tests.
Service tests run against an in-memory SQLite database; the API tests import
the Flask app, which is pointed at a throwaway SQLite file below.
"""

import os
import tempfile
from uuid import uuid4

import pytest

_API_DB_DIR = tempfile.mkdtemp(prefix="bomabnb-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_API_DB_DIR, 'api.db')}")
os.environ.setdefault("STRUCTURED_LOGS_ENABLED", "false")

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from werkzeug.security import generate_password_hash

from bomabnb.database import Base
from bomabnb.models import (
    AccountStatus,
    AppRole,
    Partner,
    Property,
    PropertyType,
    Referral,
    Referrer,
    User,
    UserRole,
)
from bomabnb.observability import reset_metrics
from bomabnb.services.inflight import InFlightRegistry

TEST_PASSWORD = "secret123"


class StubConfig:
    APP_NAME = "BomaBnB"
    AGENT_COMMISSION_RATE = 0.10
    COMMISSION_RATE_SOURCE = "config"
    PLATFORM_COMMISSION_RATE = 0.15
    DEFAULT_AGENT_COMMISSION_PERCENT = 10.00
    FEATURE_DURATION_OPTIONS = (7, 14, 30, 90)
    FEATURE_PRICES = {7: 5000, 14: 9000, 30: 18000, 90: 45000}
    ACCOUNT_REINSTATEMENT_ENABLED = False
    STATUS_POLL_INTERVAL_SECONDS = 0.01
    MIN_PASSWORD_LENGTH = 6
    PHONE_COUNTRY_CODE = "254"
    FEATURED_ROTATION_SIZE = 5
    NOTIFICATIONS_PAGE_SIZE = 20
    REVIEW_MAX_LENGTH = 2000


@pytest.fixture
def engine():
    """A private in-memory database per test; StaticPool keeps one shared connection."""
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def clean_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def inflight():
    return InFlightRegistry()


@pytest.fixture
def stub_config():
    return StubConfig


def make_user(db_session, *roles, email=None, full_name="Test User", phone_number="0712345678"):
    user = User(
        email=email or f"user_{uuid4().hex[:8]}@example.com",
        full_name=full_name,
        passwordHash=generate_password_hash(TEST_PASSWORD),
        phone_number=phone_number,
    )
    db_session.add(user)
    db_session.flush()
    db_session.add(UserRole(userID=user.userID, role=AppRole.USER))
    for role in roles:
        db_session.add(UserRole(userID=user.userID, role=role))
    db_session.commit()
    return user


def make_partner(db_session, status=AccountStatus.ACTIVE, referrer=None, **kwargs):
    user = make_user(db_session, AppRole.PARTNER, **kwargs)
    partner = Partner(
        userID=user.userID,
        business_name="Coastal Stays",
        location="Diani",
        status=status,
    )
    db_session.add(partner)
    db_session.flush()
    if referrer is not None:
        db_session.add(Referral(referrerID=referrer.referrerID, partnerID=partner.partnerID))
    db_session.commit()
    return partner


def make_referrer(db_session, status=AccountStatus.ACTIVE, commission_rate=10, **kwargs):
    user = make_user(db_session, AppRole.REFERRER, **kwargs)
    referrer = Referrer(
        userID=user.userID,
        referral_code=f"BOMA{uuid4().hex[:6].upper()}",
        business_name="Agent Co",
        commission_rate=commission_rate,
        status=status,
    )
    db_session.add(referrer)
    db_session.commit()
    return referrer


def make_admin(db_session, **kwargs):
    return make_user(db_session, AppRole.ADMIN, **kwargs)


def make_property(db_session, partner, **overrides):
    fields = dict(
        partnerID=partner.partnerID,
        property_name="Ocean View Villa",
        property_type=PropertyType.VILLA,
        location="Diani",
        price_per_night=5000,
        number_of_units=2,
        max_guests_per_unit=3,
        featured_image="https://img.example.com/villa.jpg",
        contact_phone="0712345678",
        contact_email="host@example.com",
        is_active=True,
    )
    fields.update(overrides)
    listing = Property(**fields)
    db_session.add(listing)
    db_session.commit()
    return listing


@pytest.fixture
def admin(db_session):
    return make_admin(db_session)


@pytest.fixture
def referrer(db_session):
    return make_referrer(db_session)


@pytest.fixture
def partner(db_session, referrer):
    return make_partner(db_session, referrer=referrer)


@pytest.fixture
def listing(db_session, partner):
    return make_property(db_session, partner)
