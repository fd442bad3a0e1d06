"""
Pytest configuration and fixtures.
"""

import sys
import os
from typing import AsyncGenerator
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

# Add app to path
sys.path.append(os.getcwd())

from app.config import settings
from app.database import Base

import app.models  # noqa: F401

WEBHOOK_SECRET = "whsec_test"
CRON_SECRET = "cron_test"
SESSION_SECRET = "session_test_secret"


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Secrets the routes and clients expect, the same for every test."""
    monkeypatch.setattr(settings, "processor_secret_key", "sk_test")
    monkeypatch.setattr(settings, "processor_webhook_secret", WEBHOOK_SECRET)
    monkeypatch.setattr(settings, "cron_secret", CRON_SECRET)
    monkeypatch.setattr(settings, "secret_key", SESSION_SECRET)
    monkeypatch.setattr(settings, "admin_api_key", "admin_test")
    monkeypatch.setattr(settings, "brevo_api_key", "")
    monkeypatch.setattr(settings, "sweep_call_delay_seconds", 0)
    return settings


@pytest.fixture(autouse=True)
def scheduled_side_effects():
    """Never reach Celery from tests; expose the kicks for assertions."""
    with patch("app.services.activation_service.schedule_side_effects") as kick:
        yield kick


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """File-backed SQLite per test, so separate sessions really race."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for a test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def mock_redis():
    redis = AsyncMock()
    redis.incr.return_value = 1
    redis.get.return_value = None
    return redis


@pytest.fixture
def client(session_factory, mock_redis):
    """TestClient with the DB session and Redis swapped for test doubles."""
    from fastapi.testclient import TestClient

    from app.database import get_db
    from app.main import app
    from app.redis import get_redis

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def override_get_redis():
        return mock_redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    yield TestClient(app)
    app.dependency_overrides.clear()
