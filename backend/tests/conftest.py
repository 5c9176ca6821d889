"""Shared pytest fixtures for test suite"""
import os
import sys
from pathlib import Path
from typing import Generator, Optional
from unittest.mock import AsyncMock, Mock, patch

import pytest

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("ACCOUNT_TOKEN_SECRET", "test-account-token-secret")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_dummy")
os.environ.setdefault("YOUTUBE_API_KEY", "test-youtube-key")
os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key")

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

import fakeredis
import stripe
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tlyt.main import app
from tlyt.db.session import get_db
from tlyt.db import redis as redis_module
from tlyt.models import Base
from tlyt.models.account import Account
from tlyt.models.chip_package import ChipPackage
from tlyt.models.ledger_entry import EntryCategory
from tlyt.models.video import Video
from tlyt.services.balance_guard import credit
from tlyt.services.gemini_service import AnalysisResult, TimestampNote
from tlyt.services.ledger_service import create_account
from tlyt.utils.account_tokens import generate_account_token


# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

BASIC_PRICE = "price_basic_test"
VALUE_PRICE = "price_value_test"


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def mock_redis():
    """Replace the lazily created Redis client with fakeredis"""
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)
    with patch.object(redis_module, '_client', fake_redis):
        yield fake_redis


@pytest.fixture(scope="function")
def client(db_session: Session, mock_redis) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database and mocked Redis"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db

    try:
        with patch('tlyt.main.initialize_otel', return_value=False):
            with patch('tlyt.main.init_db'):
                with patch('tlyt.tasks.reconcile.reconcile_task', new=AsyncMock()):
                    with TestClient(app) as test_client:
                        yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def mock_stripe():
    """Mock the Stripe module used by the billing service"""
    with patch('tlyt.services.stripe_service.stripe') as mock_stripe_module:
        mock_stripe_module.checkout.Session.create = Mock(return_value=Mock(
            id="cs_test123",
            url="https://checkout.stripe.com/test"
        ))
        mock_stripe_module.checkout.Session.list_line_items = Mock(return_value={"data": []})
        mock_stripe_module.Webhook.construct_event = Mock(return_value={
            "id": "evt_test123",
            "type": "customer.created",
            "data": {"object": {}}
        })

        # Keep real exception classes so except clauses still work
        mock_stripe_module.SignatureVerificationError = stripe.SignatureVerificationError
        mock_stripe_module.StripeError = stripe.StripeError

        yield mock_stripe_module


def make_account(db: Session, balance: int = 0, claimed: bool = True, email: Optional[str] = None) -> Account:
    """Account whose starting balance is backed by an admin_credit entry"""
    account = create_account(db, email=email)
    if claimed:
        account.external_id = f"ext-{account.id}"
        db.commit()
    if balance:
        credit(account.id, balance, "Starting balance", EntryCategory.ADMIN_CREDIT, db)
    db.refresh(account)
    return account


def auth_headers(account: Account) -> dict:
    return {"X-Account-Token": generate_account_token(account.id)}


@pytest.fixture(scope="function")
def account_factory(db_session: Session):
    def _make(balance: int = 0, claimed: bool = True, email: Optional[str] = None) -> Account:
        return make_account(db_session, balance=balance, claimed=claimed, email=email)
    return _make


@pytest.fixture(scope="function")
def trial_account(db_session: Session) -> Account:
    return make_account(db_session, claimed=False)


@pytest.fixture(scope="function")
def video_factory(db_session: Session):
    def _make(duration_seconds: int = 5400, youtube_id: str = "dQw4w9WgXcQ") -> Video:
        video = Video(
            youtube_id=youtube_id,
            title="Test video",
            channel_title="Test channel",
            duration=f"PT{duration_seconds}S",
            duration_seconds=duration_seconds,
            chip_cost=None,
        )
        db_session.add(video)
        db_session.commit()
        db_session.refresh(video)
        return video
    return _make


@pytest.fixture(scope="function")
def packages(db_session: Session):
    basic = ChipPackage(name="Basic Pack", chip_amount=70, price_cents=100,
                        stripe_price_id=BASIC_PRICE, sort_order=1)
    value = ChipPackage(name="Value Pack", chip_amount=200, price_cents=250,
                        stripe_price_id=VALUE_PRICE, sort_order=2)
    db_session.add_all([basic, value])
    db_session.commit()
    db_session.refresh(basic)
    db_session.refresh(value)
    return basic, value


class FakeProvider:
    """Stand-in analysis provider that succeeds or raises on demand"""

    def __init__(self, error: Optional[Exception] = None, on_call=None):
        self.error = error
        self.on_call = on_call
        self.calls = []

    def analyze(self, youtube_id, duration_seconds, instructions=None):
        self.calls.append((youtube_id, duration_seconds, instructions))
        if self.on_call:
            self.on_call()
        if self.error:
            raise self.error
        return AnalysisResult(
            summary="A detailed summary",
            short_summary="Short",
            timestamps=[TimestampNote(seconds=0, description="Intro"), TimestampNote(seconds=90, description="Main point")],
        )
