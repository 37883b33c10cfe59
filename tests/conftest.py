import os
from typing import AsyncGenerator

# Settings are read at import time.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import app.core.models  # noqa: F401
from app.db.session import Base, get_db, get_session_factory
from app.main import app as fastapi_app
from app.scheduler.jobs import JobScheduler


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# SQLite has no schemas; tables are created unqualified.
SCHEMA_TRANSLATE_MAP = {"core": None, "finance": None, "payroll": None, "leave": None}


@pytest.fixture()
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database per test with every table created."""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        execution_options={"schema_translate_map": SCHEMA_TRANSLATE_MAP},
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
async def client(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app, one session per request."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_session_factory] = lambda: session_factory
    original_scheduler = fastapi_app.state.job_scheduler
    fastapi_app.state.job_scheduler = JobScheduler(session_factory)

    async with AsyncClient(transport=ASGITransport(app=fastapi_app), base_url="http://test") as ac:
        yield ac

    fastapi_app.dependency_overrides.clear()
    fastapi_app.state.job_scheduler = original_scheduler
