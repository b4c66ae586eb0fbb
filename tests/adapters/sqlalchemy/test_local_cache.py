from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from creditkeeper.adapters.sqlalchemy import SqlAlchemyLocalCache
from creditkeeper.domain.errors import CacheUnavailable

if TYPE_CHECKING:
    from pathlib import Path


def test_values_survive_reopening(tmp_path: Path) -> None:
    uri = f"sqlite+pysqlite:///{tmp_path / 'cache.db'}"
    cache = SqlAlchemyLocalCache.open(uri)
    cache.set("session", "first")
    cache.set("session", "second")
    cache.close()

    reopened = SqlAlchemyLocalCache.open(uri)
    try:
        assert reopened.get("session") == "second"
        assert reopened.get("missing") is None
    finally:
        reopened.close()


def test_remove_and_remove_all(tmp_path: Path) -> None:
    cache = SqlAlchemyLocalCache.open(f"sqlite+pysqlite:///{tmp_path / 'cache.db'}")
    for key in ("a", "b", "c"):
        cache.set(key, key.upper())

    cache.remove("a")
    cache.remove("not-there")
    cache.remove_all(["b", "c"])
    cache.remove_all([])

    assert [cache.get(key) for key in ("a", "b", "c")] == [None, None, None]
    cache.close()


def test_unreachable_database_raises_cache_unavailable(tmp_path: Path) -> None:
    missing_dir = tmp_path / "missing" / "cache.db"

    with pytest.raises(CacheUnavailable):
        SqlAlchemyLocalCache.open(f"sqlite+pysqlite:///{missing_dir}")
