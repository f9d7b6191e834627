# backend/tests/conftest.py
"""
Pytest configuration for the booking core.

Every test gets its own in-memory SQLite database. The API client is wired
to the same engine through dependency overrides, including the session
factory used by post-response event drains.
"""

import os

# Set testing mode BEFORE any coachdesk imports
os.environ["is_testing"] = "true"
os.environ["CI"] = "1"
os.environ["rate_limit_enabled"] = "false"
os.environ["slot_lock_enabled"] = "false"
os.environ.pop("REDIS_URL", None)

from fastapi.testclient import TestClient
from pydantic import SecretStr
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from coachdesk.api.dependencies import get_session_factory
from coachdesk.core.config import settings
from coachdesk.database import Base, get_db, init_db
from coachdesk.main import app
from coachdesk.ratelimit.limiter import InMemoryRateStore, RateLimiter, policies_from_settings
from tests._utils.booking_seed import ADMIN_TOKEN, FRIEND_CODE, WEBHOOK_SECRET, seed_rule


@pytest.fixture
def engine():
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Known secrets and codes; restored after each test."""
    monkeypatch.setattr(settings, "friend_codes", [FRIEND_CODE])
    monkeypatch.setattr(settings, "admin_api_token", SecretStr(ADMIN_TOKEN))
    monkeypatch.setattr(settings, "stripe_webhook_secret", SecretStr(WEBHOOK_SECRET))
    monkeypatch.setattr(settings, "slot_lead_time_minutes", 15)
    monkeypatch.setattr(settings, "slot_lock_enabled", False)
    return settings


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.state.rate_limiter = RateLimiter(
        InMemoryRateStore(), policies_from_settings(settings), enabled=False
    )
    # No context manager: the lifespan would rebind the app to the default engine
    yield TestClient(app)
    app.dependency_overrides.clear()
    app.state.rate_limiter = None


@pytest.fixture
def admin_headers():
    return {"X-Admin-Token": ADMIN_TOKEN}


@pytest.fixture
def monday_rule(db):
    """Monday 09:00-12:00 vod-review, hourly starts."""
    return seed_rule(db)
