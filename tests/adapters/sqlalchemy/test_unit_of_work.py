from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from creditkeeper.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyUnitOfWork,
    StartupError,
    configured_engine,
    is_started,
    shutdown,
    startup,
)
from creditkeeper.domain.model import Profile
from creditkeeper.domain.ports import (
    GrantRepository,
    ProfileRepository,
    ProfileUnitOfWork,
    SessionTokenRepository,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.engine import Engine


def test_unit_of_work_requires_startup() -> None:
    shutdown()

    assert not is_started()
    with pytest.raises(StartupError):
        SqlAlchemyUnitOfWork()


def test_startup_twice_requires_force(sqlite_engine: Engine) -> None:
    startup(engine=sqlite_engine, force=True)
    try:
        with pytest.raises(StartupError):
            startup(engine=sqlite_engine)
        assert configured_engine() is sqlite_engine
    finally:
        shutdown()


def test_uncommitted_changes_are_rolled_back(
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> None:
    with sqlite_unit_of_work() as uow:
        uow.repositories.profiles.add(Profile(id="user-1"))

    with sqlite_unit_of_work() as uow:
        assert uow.repositories.profiles.get("user-1") is None
        uow.repositories.profiles.add(Profile(id="user-1", credits_current=3))
        uow.commit()

    with sqlite_unit_of_work() as uow:
        stored = uow.repositories.profiles.get("user-1")
        assert stored is not None
        assert stored.credits_current == 3


def test_repositories_unavailable_outside_context(
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> None:
    uow = sqlite_unit_of_work()

    with pytest.raises(StartupError):
        _ = uow.repositories


def test_repositories_satisfy_persistence_ports(
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> None:
    with sqlite_unit_of_work() as uow:
        assert isinstance(uow, ProfileUnitOfWork)
        assert isinstance(uow.repositories.profiles, ProfileRepository)
        assert isinstance(uow.repositories.grants, GrantRepository)
        assert isinstance(uow.repositories.session_tokens, SessionTokenRepository)
