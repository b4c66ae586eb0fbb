from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import create_engine, inspect

from creditkeeper.adapters.sqlalchemy.migrations import (
    current_revision,
    head_revision,
    upgrade_head,
)

if TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.engine import Engine


def test_fixture_engine_is_at_head(sqlite_engine: Engine) -> None:
    assert head_revision() == "0001_initial"
    assert current_revision(sqlite_engine) == head_revision()


def test_upgrade_is_repeatable(sqlite_engine: Engine) -> None:
    assert upgrade_head(engine=sqlite_engine) == "0001_initial"
    assert current_revision(sqlite_engine) == "0001_initial"


def test_upgrade_by_uri_creates_store_tables(tmp_path: Path) -> None:
    uri = f"sqlite+pysqlite:///{tmp_path / 'fresh.db'}"

    assert upgrade_head(database_uri=uri) is None

    engine = create_engine(uri)
    try:
        tables = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    assert {"profile", "profile_grant", "session_token"} <= tables
