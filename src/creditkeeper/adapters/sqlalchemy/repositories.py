"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import delete, select

from creditkeeper.adapters.sqlalchemy.mappings import profile_grant_table, session_token_table
from creditkeeper.domain.model import GrantEntry, Profile, SessionToken

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


class SqlAlchemyProfileRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: Profile) -> None:
        self.session.add(entity)

    def get(self, profile_id: str) -> Profile | None:
        return self.session.get(Profile, profile_id, populate_existing=True)

    def delete(self, profile: Profile) -> None:
        self.session.delete(profile)


class SqlAlchemyGrantRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: GrantEntry) -> None:
        self.session.add(entity)
        # surface a duplicate transaction id here, not at commit
        self.session.flush()

    def get(self, transaction_id: str) -> GrantEntry | None:
        return self.session.get(GrantEntry, transaction_id)

    def for_profile(self, profile_id: str) -> list[GrantEntry]:
        stmt = (
            select(GrantEntry)
            .where(profile_grant_table.c.profile_id == profile_id)
            .order_by(profile_grant_table.c.granted_at)
        )
        return list(self.session.execute(stmt).scalars())


class SqlAlchemySessionTokenRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, token: str) -> SessionToken | None:
        stmt = select(session_token_table).where(session_token_table.c.token == token)
        row = self.session.execute(stmt).one_or_none()
        if row is None:
            return None
        return SessionToken(
            token=row.token,
            user_id=row.user_id,
            issued_at=row.issued_at,
            expires_at=row.expires_at,
        )

    def issue(self, token: str, user_id: str, *, expires_at: datetime | None) -> None:
        self.session.execute(
            session_token_table.insert().values(
                token=token,
                user_id=user_id,
                issued_at=datetime.now(UTC),
                expires_at=expires_at,
            )
        )

    def revoke(self, token: str) -> None:
        self.session.execute(
            delete(session_token_table).where(session_token_table.c.token == token)
        )

    def revoke_all(self, user_id: str) -> None:
        self.session.execute(
            delete(session_token_table).where(session_token_table.c.user_id == user_id)
        )


if TYPE_CHECKING:
    from creditkeeper.domain.ports.persistence import (
        GrantRepository,
        ProfileRepository,
        SessionTokenRepository,
    )

    _session_check: Session
    _profile_repo_check: ProfileRepository = SqlAlchemyProfileRepository(_session_check)
    _grant_repo_check: GrantRepository = SqlAlchemyGrantRepository(_session_check)
    _token_repo_check: SessionTokenRepository = SqlAlchemySessionTokenRepository(_session_check)
