"""SQLAlchemy adapter package for creditkeeper."""

from __future__ import annotations

from .local_cache import SqlAlchemyLocalCache
from .mappings import mapper_registry, start_mappers
from .profile_store import SqlAlchemyProfileStore
from .repositories import (
    SqlAlchemyGrantRepository,
    SqlAlchemyProfileRepository,
    SqlAlchemySessionTokenRepository,
)
from .unit_of_work import SqlAlchemyUnitOfWork, shutdown, startup

__all__ = [
    "SqlAlchemyGrantRepository",
    "SqlAlchemyLocalCache",
    "SqlAlchemyProfileRepository",
    "SqlAlchemyProfileStore",
    "SqlAlchemySessionTokenRepository",
    "SqlAlchemyUnitOfWork",
    "mapper_registry",
    "shutdown",
    "start_mappers",
    "startup",
]
