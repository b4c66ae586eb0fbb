"""Engine lifecycle and unit of work for the canonical profile store."""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, Literal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from creditkeeper.adapters.sqlalchemy.mappings import start_mappers
from creditkeeper.adapters.sqlalchemy.migrations import upgrade_head
from creditkeeper.adapters.sqlalchemy.repositories import (
    SqlAlchemyGrantRepository,
    SqlAlchemyProfileRepository,
    SqlAlchemySessionTokenRepository,
)
from creditkeeper.config import get_database_config
from creditkeeper.domain.ports.unit_of_work import ProfileRepositories

if TYPE_CHECKING:
    from types import TracebackType

    from sqlalchemy.engine import Engine

log = getLogger(__name__)


class StartupError(RuntimeError):
    """The profile store was used before ``startup()`` or configured twice."""


@dataclass(slots=True)
class _StoreState:
    engine: Engine | None = None
    session_factory: sessionmaker[Session] | None = None


_STATE = _StoreState()


def create_database_engine(database_uri: str) -> Engine:
    connect_args: dict[str, object] = {}
    if database_uri.startswith("sqlite"):
        # concurrent grant writers wait for the lock instead of failing at once
        connect_args = {"timeout": 30, "check_same_thread": False}
    return create_engine(database_uri, future=True, connect_args=connect_args)


def startup(
    *,
    engine: Engine | None = None,
    database_uri: str | None = None,
    force: bool = False,
) -> Engine:
    """Bind the profile store to an engine, migrating its schema to head."""

    if _STATE.engine is not None and not force:
        raise StartupError("Profile store already started; pass force=True to rebind it")

    bound = engine or create_database_engine(database_uri or get_database_config().uri)
    start_mappers()
    upgrade_head(engine=bound)
    _STATE.engine = bound
    _STATE.session_factory = sessionmaker(bind=bound, expire_on_commit=False)
    log.debug("Profile store bound to %s", bound.url.render_as_string(hide_password=True))
    return bound


def configured_engine() -> Engine | None:
    return _STATE.engine


def is_started() -> bool:
    return _STATE.engine is not None


def shutdown() -> None:
    if _STATE.engine is not None:
        _STATE.engine.dispose()
    _STATE.engine = None
    _STATE.session_factory = None


class SqlAlchemyUnitOfWork:
    """Session-per-transaction over profiles, grants and session tokens."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        factory = session_factory or _STATE.session_factory
        if factory is None:
            raise StartupError(
                "Profile store not started. Call "
                "creditkeeper.adapters.sqlalchemy.unit_of_work.startup() first."
            )
        self.session_factory = factory
        self._session: Session | None = None
        self._repositories: ProfileRepositories | None = None

    def __enter__(self) -> SqlAlchemyUnitOfWork:
        if self._session is not None:
            raise StartupError("Unit of work is already open")
        session = self.session_factory()
        self._session = session
        self._repositories = ProfileRepositories(
            profiles=SqlAlchemyProfileRepository(session),
            grants=SqlAlchemyGrantRepository(session),
            session_tokens=SqlAlchemySessionTokenRepository(session),
        )
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        session = self.session
        try:
            # anything not committed by now is discarded
            session.rollback()
        finally:
            session.close()
            self._session = None
            self._repositories = None
        return False

    @property
    def session(self) -> Session:
        if self._session is None:
            raise StartupError("Unit of work used outside its context")
        return self._session

    @property
    def repositories(self) -> ProfileRepositories:
        if self._repositories is None:
            raise StartupError("Unit of work used outside its context")
        return self._repositories

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()


if TYPE_CHECKING:
    from creditkeeper.domain.ports.unit_of_work import ProfileUnitOfWork

    _uow_check: ProfileUnitOfWork = SqlAlchemyUnitOfWork()
