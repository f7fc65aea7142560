from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from fakes import FakeClock, FakeDataStore, FakeProvider, FakeWallClock, no_sleep
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from nova_session.db.init_db import init_db
from nova_session.db.session import create_sessionmaker
from nova_session.resilience.breaker import BreakerPolicy, CircuitBreaker
from nova_session.resilience.retry import RetryPolicy
from nova_session.session.cache import PersistenceCache


@pytest_asyncio.fixture
async def sessionmaker(tmp_path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}")
    await init_db(engine)
    try:
        yield create_sessionmaker(engine)
    finally:
        await engine.dispose()


@pytest.fixture
def wall_clock() -> FakeWallClock:
    return FakeWallClock()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(sessionmaker, wall_clock) -> PersistenceCache:
    return PersistenceCache(sessionmaker, clock=wall_clock)


@pytest.fixture
def breaker(clock) -> CircuitBreaker:
    return CircuitBreaker(policy=BreakerPolicy(failure_threshold=3, cooldown=30.0), clock=clock)


@pytest.fixture
def retry() -> RetryPolicy:
    return RetryPolicy(max_retries=2, base_delay_ms=10, sleep=no_sleep)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def data_store() -> FakeDataStore:
    return FakeDataStore()
