"""
Pytest configuration for the application
"""
import os
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from asgi_lifespan import LifespanManager
from fastapi import FastAPI
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.core.config import settings
from src.db.base import Base
from src.db.models import PlanConfig
from src.db.session import get_db
from src.main import create_application
from src.services import limits as limits_service
from src.services.events import publish_committed
from src.services.plans import DEFAULT_PLANS, plan_to_row, reset_catalog_cache
from tests.factories import FakeRedis, FakeVerifier


# Set test environment and override runtime settings to avoid external deps
os.environ["ENV"] = "test"
settings.ENV = "test"
settings.scheduler.enabled = False
settings.DATABASE_URI = "sqlite+aiosqlite:///./test_app.db"


@pytest.fixture(autouse=True)
def _fresh_plan_catalog():
    reset_catalog_cache()
    yield
    reset_catalog_cache()


@pytest_asyncio.fixture
async def test_db_engine(tmp_path):
    """
    Create an isolated SQLite database for one test.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.execute(
            insert(PlanConfig),
            [plan_to_row(plan, position) for position, plan in enumerate(DEFAULT_PLANS)],
        )

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_db_engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    Create a new database session for a test.
    """
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_redis(monkeypatch) -> FakeRedis:
    """Patch the limits module to use an in-memory Redis stub."""

    fake = FakeRedis()
    monkeypatch.setattr(limits_service, "_redis_client", fake, raising=False)
    yield fake
    monkeypatch.setattr(limits_service, "_redis_client", None, raising=False)


@pytest.fixture
def fake_verifier() -> FakeVerifier:
    return FakeVerifier()


@pytest_asyncio.fixture
async def test_app(session_factory, fake_verifier, fake_redis) -> AsyncGenerator[FastAPI, None]:
    """
    Create a FastAPI test application bound to the per-test database.
    """
    app = create_application()
    app.state.payment_verifier = fake_verifier

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            await publish_committed(session)

    app.dependency_overrides[get_db] = _override_get_db
    async with LifespanManager(app):
        yield app


@pytest_asyncio.fixture
async def client(test_app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    """
    Create an async HTTP client for testing.
    """
    transport = httpx.ASGITransport(app=test_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client
