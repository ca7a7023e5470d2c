"""
Shared fixtures for roster sync tests.
"""

import pytest

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from memberhub.core.database import Base
import memberhub.models  # noqa: F401

from support import FakeRosterClient, RecordingSleep


@pytest.fixture
async def engine():
    """In-memory database shared by every session of a test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    """Create a database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def roster():
    return FakeRosterClient()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()
