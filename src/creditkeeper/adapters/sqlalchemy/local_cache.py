"""SQLite-backed implementation of the local key/value cache."""

from __future__ import annotations

from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from sqlalchemy import delete, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from creditkeeper.adapters.sqlalchemy.mappings import cache_entry_table
from creditkeeper.adapters.sqlalchemy.unit_of_work import create_database_engine
from creditkeeper.domain.errors import CacheUnavailable

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.engine import Engine

log = getLogger(__name__)


class SqlAlchemyLocalCache:
    """Key/value cache in its own SQLite database; every call is its own transaction."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    @classmethod
    def open(cls, uri: str) -> SqlAlchemyLocalCache:
        engine = create_database_engine(uri)
        try:
            cache_entry_table.create(engine, checkfirst=True)
        except SQLAlchemyError as exc:
            raise CacheUnavailable(f"Could not open local cache at {uri}") from exc
        return cls(engine)

    def get(self, key: str) -> str | None:
        stmt = select(cache_entry_table.c.value).where(cache_entry_table.c.key == key)
        try:
            with self.engine.connect() as connection:
                return connection.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise CacheUnavailable(f"Could not read {key!r} from the local cache") from exc

    def set(self, key: str, value: str) -> None:
        now = datetime.now(UTC)
        stmt = sqlite_insert(cache_entry_table).values(key=key, value=value, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=[cache_entry_table.c.key],
            set_={"value": stmt.excluded.value, "updated_at": stmt.excluded.updated_at},
        )
        self._execute(stmt, action=f"write {key!r}")

    def remove(self, key: str) -> None:
        self._execute(
            delete(cache_entry_table).where(cache_entry_table.c.key == key),
            action=f"remove {key!r}",
        )

    def remove_all(self, keys: Sequence[str]) -> None:
        if not keys:
            return
        self._execute(
            delete(cache_entry_table).where(cache_entry_table.c.key.in_(list(keys))),
            action=f"remove {len(keys)} keys",
        )

    def close(self) -> None:
        self.engine.dispose()

    def _execute(self, stmt: object, *, action: str) -> None:
        try:
            with self.engine.begin() as connection:
                connection.execute(stmt)  # type: ignore[arg-type]
        except SQLAlchemyError as exc:
            log.warning("Local cache failed to %s: %s", action, exc)
            raise CacheUnavailable(f"Could not {action} in the local cache") from exc


if TYPE_CHECKING:
    from creditkeeper.domain.ports import LocalCache

    _cache_check: LocalCache = SqlAlchemyLocalCache(create_database_engine("sqlite://"))
