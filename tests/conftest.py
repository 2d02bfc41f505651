"""
Pytest configuration and shared fixtures.

Test environment variables are set here before any wabot import so the cached
settings, the engine and the app all see them.
"""

import os
import tempfile

os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(tempfile.gettempdir(), 'wabot_test.db')}")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("ADMIN_NUMBERS", "admin@c.us")
os.environ.setdefault("ANALYTICS_SCHEDULE_ENABLED", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Clear settings cache before any app imports to ensure test env vars are used
from wabot.config import get_settings
get_settings.cache_clear()

from wabot import models  # noqa: E402,F401
from wabot.storage import Base, SessionLocal, engine  # noqa: E402


@pytest.fixture(scope="function")
def db():
    """Fresh tables for each test; yields the session factory."""
    Base.metadata.create_all(bind=engine)

    yield SessionLocal

    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def broken_session_factory():
    """Session factory whose every query fails with an OperationalError."""
    missing = os.path.join(tempfile.gettempdir(), "wabot-missing-dir", "nested", "bot.db")
    broken_engine = create_engine(f"sqlite:///{missing}")
    yield sessionmaker(bind=broken_engine)
    broken_engine.dispose()
