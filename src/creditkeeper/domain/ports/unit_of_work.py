"""Transaction boundary of the canonical profile store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from types import TracebackType

    from creditkeeper.domain.ports.persistence import (
        GrantRepository,
        ProfileRepository,
        SessionTokenRepository,
    )


@dataclass(slots=True)
class ProfileRepositories:
    profiles: ProfileRepository
    grants: GrantRepository
    session_tokens: SessionTokenRepository


@runtime_checkable
class ProfileUnitOfWork(Protocol):
    """One store transaction; nothing is written unless ``commit`` is called.

    Leaving the context without committing discards every change, including the
    grant row a duplicate transaction id failed to insert.
    """

    @property
    def repositories(self) -> ProfileRepositories: ...

    def __enter__(self) -> ProfileUnitOfWork: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> bool: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...
