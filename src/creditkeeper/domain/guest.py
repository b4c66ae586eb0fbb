"""Guest identities and their one-time migration into a registered account."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from creditkeeper.domain.errors import AccessError, MigrationFailed
from creditkeeper.domain.model import (
    GrantKind,
    GrantRequest,
    GrantStatus,
    GuestArtifact,
    GuestIdentity,
    MigrationPhase,
    MigrationResult,
    MigrationState,
    MigrationStatus,
    RegisteredIdentity,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from creditkeeper.domain.ledger import EntitlementLedger
    from creditkeeper.domain.local_state import LocalState

log = getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def migration_transaction_id(guest_id: str) -> str:
    return f"migration:{guest_id}"


class GuestIdentityManager:
    """Creates the local guest identity and migrates it into an account.

    Migration runs as four resumable steps: record a pending state, transfer
    credits (through the ledger, keyed by the guest id) and artifacts (merged by
    artifact id), mark the guest consumed, then clear the guest marker. A crash
    or failure before the last step leaves the marker in place so calling
    ``migrate`` again finishes the job without transferring anything twice. A
    pending migration can only be resumed into the account it started with.
    """

    def __init__(
        self,
        *,
        state: LocalState,
        ledger: EntitlementLedger,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self.state = state
        self.ledger = ledger
        self.clock = clock
        self.id_factory = id_factory

    def current_guest(self) -> GuestIdentity | None:
        guest_id = self.state.guest_id()
        if guest_id is None:
            return None
        migration = self.state.migration_state()
        if migration is not None and migration.phase is MigrationPhase.CONSUMED:
            return None
        return GuestIdentity(guest_id=guest_id)

    def is_guest(self) -> bool:
        return self.current_guest() is not None

    def create_guest(self) -> str:
        existing = self.current_guest()
        if existing is not None:
            return existing.guest_id
        if self.state.guest_id() is not None:
            # consumed guest whose marker was never cleared
            self.state.clear_guest()
        guest_id = self.id_factory()
        self.state.save_guest(guest_id, created_at=self.clock())
        log.info("Created guest identity %s", guest_id)
        return guest_id

    def record_artifact(self, artifact_id: str, uri: str) -> GuestArtifact:
        if self.current_guest() is None:
            raise MigrationFailed("No guest identity to attach the artifact to")
        artifacts = self.state.guest_artifacts()
        for artifact in artifacts:
            if artifact.artifact_id == artifact_id:
                return artifact
        artifact = GuestArtifact(artifact_id=artifact_id, uri=uri, created_at=self.clock())
        self.state.save_guest_artifacts([*artifacts, artifact])
        return artifact

    def artifacts_for(self, user_id: str) -> list[GuestArtifact]:
        return self.state.user_artifacts(user_id)

    async def migrate(self, new_user_id: str) -> MigrationResult:
        guest_id = self.state.guest_id()
        if guest_id is None:
            return MigrationResult(status=MigrationStatus.NO_GUEST, user_id=new_user_id)

        migration = self.state.migration_state()
        if migration is not None and migration.phase is MigrationPhase.CONSUMED:
            self.state.clear_guest()
            log.info(
                "Finished clearing guest %s already migrated to %s",
                guest_id,
                migration.target_user_id,
            )
            return MigrationResult(
                status=MigrationStatus.ALREADY_MIGRATED,
                guest_id=guest_id,
                user_id=migration.target_user_id,
            )

        if migration is not None and migration.target_user_id != new_user_id:
            # the credits may already sit in the pending target
            log.warning(
                "Guest %s has a pending migration into %s; refusing %s",
                guest_id,
                migration.target_user_id,
                new_user_id,
            )
            raise MigrationFailed(
                f"Guest {guest_id} is already being migrated into {migration.target_user_id}"
            )

        self.state.save_migration_state(
            MigrationState(phase=MigrationPhase.PENDING, target_user_id=new_user_id)
        )

        guest = GuestIdentity(guest_id=guest_id)
        account = RegisteredIdentity(user_id=new_user_id)
        try:
            balance = await self.ledger.get_balance(guest)
            transferred = await self.ledger.grant(
                account,
                GrantRequest(
                    transaction_id=migration_transaction_id(guest_id),
                    credit_delta=balance.credits_current,
                    new_max=balance.credits_max,
                    kind=GrantKind.TOP_UP,
                ),
            )
        except AccessError as exc:
            log.warning("Guest migration %s -> %s failed: %s", guest_id, new_user_id, exc)
            raise MigrationFailed(f"Could not transfer guest credits: {exc}") from exc

        artifacts = self.state.guest_artifacts()
        added = self.state.merge_user_artifacts(new_user_id, artifacts)

        self.state.save_migration_state(
            MigrationState(phase=MigrationPhase.CONSUMED, target_user_id=new_user_id)
        )
        self.state.clear_mirror(guest)
        self.state.clear_guest()

        credits = balance.credits_current if transferred.status is GrantStatus.APPLIED else 0
        log.info(
            "Migrated guest %s into %s: credits=%s, artifacts=%s",
            guest_id,
            new_user_id,
            credits,
            added,
        )
        return MigrationResult(
            status=MigrationStatus.MIGRATED,
            guest_id=guest_id,
            user_id=new_user_id,
            credits_transferred=credits,
            artifacts_transferred=added,
        )
