"""Session records and authorization decisions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from creditkeeper.domain.model.enums import DecisionSource

if TYPE_CHECKING:
    from datetime import datetime

    from creditkeeper.domain.model.identity import Identity


@dataclass(frozen=True, slots=True)
class RemoteSession:
    """An authenticated session as reported by the remote identity service."""

    user_id: str
    expires_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class SessionRecord:
    """Last verified session state, cached locally.

    ``last_verified_at`` never moves backwards; see ``LocalState.save_session``.
    """

    identity: Identity | None
    authenticated: bool
    onboarding_completed: bool
    last_verified_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class AuthDecision:
    is_authenticated: bool
    identity: Identity | None
    is_guest: bool
    source: DecisionSource

    @classmethod
    def unauthenticated(cls) -> AuthDecision:
        return cls(
            is_authenticated=False,
            identity=None,
            is_guest=False,
            source=DecisionSource.FALLBACK,
        )


@dataclass(frozen=True, slots=True)
class SessionToken:
    token: str
    user_id: str
    issued_at: datetime
    expires_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now
