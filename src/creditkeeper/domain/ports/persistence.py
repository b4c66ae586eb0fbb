"""Ports for persisting canonical profiles and grant records."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from creditkeeper.domain.model import GrantEntry, Profile, SessionToken

if TYPE_CHECKING:
    from datetime import datetime


@runtime_checkable
class Repository[TEntity](Protocol):
    """Minimal repository contract for a persistent aggregate store."""

    def add(self, entity: TEntity) -> None: ...


@runtime_checkable
class ProfileRepository(Repository[Profile], Protocol):
    def get(self, profile_id: str) -> Profile | None: ...

    def delete(self, profile: Profile) -> None: ...


@runtime_checkable
class GrantRepository(Repository[GrantEntry], Protocol):
    """Grant records; ``add`` must fail on a repeated transaction id."""

    def get(self, transaction_id: str) -> GrantEntry | None: ...

    def for_profile(self, profile_id: str) -> list[GrantEntry]: ...


@runtime_checkable
class SessionTokenRepository(Protocol):
    def get(self, token: str) -> SessionToken | None: ...

    def issue(self, token: str, user_id: str, *, expires_at: datetime | None) -> None: ...

    def revoke(self, token: str) -> None: ...

    def revoke_all(self, user_id: str) -> None: ...
