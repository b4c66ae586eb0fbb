from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from creditkeeper.domain.model import (
    EntitlementRecord,
    GuestArtifact,
    GuestIdentity,
    JournalEntry,
    MigrationPhase,
    MigrationState,
    ReconcileState,
    RegisteredIdentity,
    SessionRecord,
)

if TYPE_CHECKING:
    from creditkeeper.adapters.memory import MemoryLocalCache
    from creditkeeper.domain.local_state import LocalState

NOW = datetime(2025, 3, 1, 12, tzinfo=UTC)


def _session(verified_at: datetime | None, *, onboarding: bool = False) -> SessionRecord:
    return SessionRecord(
        identity=RegisteredIdentity("user-1"),
        authenticated=True,
        onboarding_completed=onboarding,
        last_verified_at=verified_at,
    )


def test_session_round_trips(state: LocalState) -> None:
    state.save_session(_session(NOW, onboarding=True))

    loaded = state.load_session()

    assert loaded == _session(NOW, onboarding=True)
    assert state.onboarding_completed() is True


def test_last_verified_at_never_moves_backwards(state: LocalState) -> None:
    state.save_session(_session(NOW))

    saved = state.save_session(_session(NOW - timedelta(hours=2)))

    assert saved.last_verified_at == NOW
    loaded = state.load_session()
    assert loaded is not None
    assert loaded.last_verified_at == NOW


def test_clear_session_keeps_onboarding_and_guest(state: LocalState) -> None:
    state.save_session(_session(NOW, onboarding=True))
    state.save_guest("guest-1", created_at=NOW)

    state.clear_session()

    assert state.load_session() is None
    assert state.onboarding_completed() is True
    assert state.guest_id() == "guest-1"


def test_unreadable_session_is_treated_as_absent(
    state: LocalState,
    cache: MemoryLocalCache,
) -> None:
    cache.set("session.identity", "{not json")
    cache.set("session.authenticated", "true")

    assert state.load_session() is None


def test_mirror_is_scoped_per_identity(state: LocalState) -> None:
    registered = RegisteredIdentity("same-id")
    guest = GuestIdentity("same-id")
    state.save_mirror(EntitlementRecord(identity=registered, credits_current=5, credits_max=10))

    assert state.load_mirror(guest) is None
    mirror = state.load_mirror(registered)
    assert mirror is not None
    assert mirror.credits_current == 5

    state.clear_mirror(registered)
    assert state.load_mirror(registered) is None


def test_migration_state_round_trips(state: LocalState) -> None:
    state.save_migration_state(MigrationState(phase=MigrationPhase.PENDING, target_user_id="u"))

    assert state.migration_state() == MigrationState(
        phase=MigrationPhase.PENDING,
        target_user_id="u",
    )


def test_merge_user_artifacts_dedupes_by_id(state: LocalState) -> None:
    first = GuestArtifact(artifact_id="a1", uri="file:///a1.png", created_at=NOW)
    second = GuestArtifact(artifact_id="a2", uri="file:///a2.png", created_at=NOW)

    assert state.merge_user_artifacts("user-1", [first]) == 1
    assert state.merge_user_artifacts("user-1", [first, second]) == 1
    assert [artifact.artifact_id for artifact in state.user_artifacts("user-1")] == ["a1", "a2"]


def test_journal_is_pruned_to_newest_entries(state: LocalState) -> None:
    for index in range(5):
        state.save_journal_entry(
            JournalEntry(
                transaction_id=f"tx-{index}",
                product_id="starter.25",
                state=ReconcileState.ACKNOWLEDGED,
                updated_at=NOW + timedelta(minutes=index),
            ),
            limit=3,
        )

    assert sorted(state.load_journal()) == ["tx-2", "tx-3", "tx-4"]
