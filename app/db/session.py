from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.core.config import settings

# pool_pre_ping: check connection is alive before use (avoids "connection is closed" errors
# when DB or network closed idle connections).
# pool_recycle: discard connections after this many seconds to avoid stale connections.
engine = create_async_engine(
    settings.database_url,
    echo=False,
    future=True,
    pool_pre_ping=True,
    pool_recycle=300,
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_db() -> AsyncSession:
    async with AsyncSessionLocal() as session:
        yield session


def get_session_factory() -> async_sessionmaker:
    """Batch jobs open one session per entity, so they take the factory rather than a session."""
    return AsyncSessionLocal
