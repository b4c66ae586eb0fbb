"""Domain ports (interfaces) for external collaborators."""

from __future__ import annotations

from .cache import LocalCache
from .persistence import GrantRepository, ProfileRepository, SessionTokenRepository
from .profiles import RemoteProfileClient
from .transactions import TransactionStream
from .unit_of_work import ProfileRepositories, ProfileUnitOfWork

__all__ = [
    "GrantRepository",
    "LocalCache",
    "ProfileRepositories",
    "ProfileRepository",
    "ProfileUnitOfWork",
    "RemoteProfileClient",
    "SessionTokenRepository",
    "TransactionStream",
]
