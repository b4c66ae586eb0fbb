"""SQLAlchemy mapping metadata for the canonical profile store."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from functools import cache

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Dialect,
    Enum,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    TypeDecorator,
    orm,
)
from sqlalchemy.orm import configure_mappers

from creditkeeper.domain.model import GrantEntry, GrantKind, Profile

log = logging.getLogger(__name__)


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = NAMING_CONVENTION

profile_table = Table(
    "profile",
    mapper_registry.metadata,
    Column("id", String, primary_key=True),
    Column("credits_current", Integer, nullable=False, default=0),
    Column("credits_max", Integer, nullable=False, default=0),
    Column("onboarding_completed", Boolean, nullable=False, default=False),
    Column("plan_id", String, nullable=True),
    Column("period_end", UTCDateTime(), nullable=True),
    Column("version", Integer, nullable=False),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("updated_at", UTCDateTime(), nullable=False),
)

# transaction_id is the primary key: a transaction is granted at most once,
# whichever profile it was granted to. Rows outlive their profile.
profile_grant_table = Table(
    "profile_grant",
    mapper_registry.metadata,
    Column("transaction_id", String, primary_key=True),
    Column("profile_id", String, nullable=False),
    Column("credit_delta", Integer, nullable=False),
    Column(
        "kind",
        Enum(GrantKind, name="grant_kind", native_enum=False, validate_strings=True),
        nullable=False,
    ),
    Column("product_id", String, nullable=True),
    Column("granted_at", UTCDateTime(), nullable=False),
    Index("ix_profile_grant_profile_id", "profile_id"),
)

session_token_table = Table(
    "session_token",
    mapper_registry.metadata,
    Column("token", String, primary_key=True),
    Column("user_id", String, nullable=False, index=True),
    Column("issued_at", UTCDateTime(), nullable=False),
    Column("expires_at", UTCDateTime(), nullable=True),
)

# Device-local key/value cache. Lives in its own database, so it is kept out
# of the migrated metadata.
local_metadata = MetaData(naming_convention=NAMING_CONVENTION)

cache_entry_table = Table(
    "cache_entry",
    local_metadata,
    Column("key", String, primary_key=True),
    Column("value", Text, nullable=False),
    Column("updated_at", UTCDateTime(), nullable=False),
)


@cache
def start_mappers() -> orm.registry:
    """Configure SQLAlchemy mappers for the domain model."""

    log.info("Starting SQLAlchemy mappers")

    mapper_registry.map_imperatively(
        Profile,
        profile_table,
        version_id_col=profile_table.c.version,
    )

    mapper_registry.map_imperatively(
        GrantEntry,
        profile_grant_table,
    )

    configure_mappers()
    return mapper_registry

