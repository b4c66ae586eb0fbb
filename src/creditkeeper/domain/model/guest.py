"""Guest-scoped state and migration results."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from creditkeeper.domain.model.enums import MigrationPhase, MigrationStatus

if TYPE_CHECKING:
    from datetime import datetime


@dataclass(frozen=True, slots=True)
class GuestArtifact:
    """Something a guest saved locally (e.g. a generated image)."""

    artifact_id: str
    uri: str
    created_at: datetime


@dataclass(frozen=True, slots=True)
class MigrationState:
    phase: MigrationPhase
    target_user_id: str


@dataclass(frozen=True, slots=True)
class MigrationResult:
    status: MigrationStatus
    guest_id: str | None = None
    user_id: str | None = None
    credits_transferred: int = 0
    artifacts_transferred: int = 0
