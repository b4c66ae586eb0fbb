"""Alembic migrations for the profile store schema.

The script directory ships inside the package, so upgrades work from an
installed wheel as well as from a checkout.
"""

from __future__ import annotations

from logging import getLogger
from pathlib import Path
from typing import TYPE_CHECKING, Final

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, pool

from creditkeeper.config import get_database_config

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

MIGRATIONS_PATH: Final[Path] = Path(__file__).resolve().parent

log = getLogger(__name__)


def _build_config(database_uri: str | None = None) -> Config:
    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS_PATH))
    if database_uri is not None:
        # Config values are %-interpolated
        config.set_main_option("sqlalchemy.url", database_uri.replace("%", "%%"))
    return config


def head_revision() -> str | None:
    return ScriptDirectory.from_config(_build_config()).get_current_head()


def current_revision(engine: Engine) -> str | None:
    with engine.connect() as connection:
        return MigrationContext.configure(connection).get_current_revision()


def upgrade_head(*, engine: Engine | None = None, database_uri: str | None = None) -> str | None:
    """Upgrade the schema to the latest revision and return the revision it started from."""

    if engine is None:
        engine = create_engine(
            database_uri or get_database_config().uri,
            poolclass=pool.NullPool,
            future=True,
        )
        try:
            return upgrade_head(engine=engine)
        finally:
            engine.dispose()

    previous = current_revision(engine)
    config = _build_config()
    with engine.begin() as connection:
        config.attributes["connection"] = connection
        command.upgrade(config, "head")
    if previous != head_revision():
        log.info("Upgraded %s from %s to %s", engine.url.database, previous, head_revision())
    return previous
