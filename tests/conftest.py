from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest

from creditkeeper.adapters.memory import MemoryLocalCache
from creditkeeper.adapters.sqlalchemy import start_mappers
from creditkeeper.adapters.sqlalchemy.migrations import upgrade_head
from creditkeeper.adapters.sqlalchemy.profile_store import SqlAlchemyProfileStore
from creditkeeper.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyUnitOfWork,
    create_database_engine,
    shutdown,
    startup,
)
from creditkeeper.domain.local_state import LocalState
from tests.helpers.fakes import FakeProfileClient, FixedClock

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("LOCAL_CACHE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from pathlib import Path

    from sqlalchemy.engine import Engine


@pytest.fixture
def sqlite_engine(tmp_path: Path) -> Iterator[Engine]:
    # file-backed so worker threads share one database
    engine = create_database_engine(f"sqlite+pysqlite:///{tmp_path / 'creditkeeper.db'}")
    start_mappers()
    upgrade_head(engine=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def sqlite_unit_of_work(
    sqlite_engine: Engine,
) -> Iterator[Callable[[], SqlAlchemyUnitOfWork]]:
    startup(engine=sqlite_engine, force=True)

    def factory() -> SqlAlchemyUnitOfWork:
        return SqlAlchemyUnitOfWork()

    try:
        yield factory
    finally:
        shutdown()


@pytest.fixture
def profile_store(
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> SqlAlchemyProfileStore:
    return SqlAlchemyProfileStore(unit_of_work_factory=sqlite_unit_of_work)


@pytest.fixture
def cache() -> MemoryLocalCache:
    return MemoryLocalCache()


@pytest.fixture
def state(cache: MemoryLocalCache) -> LocalState:
    return LocalState(cache)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def profiles() -> FakeProfileClient:
    return FakeProfileClient()
