"""Pytest configuration and fixtures."""

import os
from unittest.mock import MagicMock

import fakeredis
import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

# Set test environment defaults (real env vars take precedence)
os.environ.setdefault("ENVIRONMENT", "paper")
os.environ.setdefault("ALPACA_API_KEY", "test_placeholder_key")
os.environ.setdefault("ALPACA_SECRET_KEY", "test_placeholder_secret")
os.environ.setdefault("DATABASE_URL", "postgresql://localhost:5432/test_db")
os.environ.setdefault("API_SECRET_KEY", "test_api_secret_not_for_production")
os.environ.setdefault("OPENAI_API_KEY", "test_openai_key")

from autopilot.config.settings import Settings  # noqa: E402
from autopilot.database.connection import init_db, make_session_factory  # noqa: E402
from autopilot.execution.broker import Quote  # noqa: E402
from autopilot.ledger.store import Ledger  # noqa: E402


@pytest.fixture
def settings():
    """Settings with auto-entry switched on and no retry backoff."""
    return Settings(
        auto_entry_enabled=True,
        ai_scoring_retry_base_seconds=0.0,
        ai_scoring_retry_cap_seconds=0.0,
    )


@pytest.fixture
def session_factory():
    """In-memory sqlite ledger shared across sessions of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def ledger(session_factory):
    return Ledger(session_factory)


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def broker():
    """Broker double with an open market and no orders or positions."""
    mock = MagicMock()
    mock.is_market_open.return_value = True
    mock.list_open_orders.return_value = []
    mock.list_positions.return_value = []
    mock.list_fill_activities.return_value = []
    mock.get_quote.side_effect = lambda symbol: Quote(symbol=symbol)
    return mock

