import os
import sys

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..")))

# Register every model with the declarative Base before create_all runs.
from backend.app import db, models  # noqa: E402,F401


@pytest.fixture(autouse=True)
def no_sentry(monkeypatch):
    monkeypatch.delenv("SENTRY_DSN", raising=False)
    yield


@pytest.fixture
def make_database():
    """Return a coroutine that builds a seeded in-memory database.

    Usage inside a test coroutine::

        engine, session_maker = await make_database(players=[...])

    The caller is responsible for ``await engine.dispose()``.
    """

    async def _make(players=(), matches=()):
        engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        async_session_maker = sessionmaker(
            engine, expire_on_commit=False, class_=AsyncSession
        )
        async with engine.begin() as conn:
            await conn.run_sync(db.Base.metadata.create_all)

        async with async_session_maker() as session:
            session.add_all([*players, *matches])
            await session.commit()
        return engine, async_session_maker

    return _make
