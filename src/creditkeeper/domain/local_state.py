"""Typed access to the device-local cache.

Every component reads and writes local state through ``LocalState`` so the key
layout lives in one place. Values are JSON or plain strings; anything that
fails to decode is treated as absent because the cache is advisory.
"""

from __future__ import annotations

import json
from datetime import datetime
from logging import getLogger
from typing import TYPE_CHECKING, Any, Final, cast

from creditkeeper.domain.model import (
    EntitlementRecord,
    GuestArtifact,
    JournalEntry,
    MigrationPhase,
    MigrationState,
    ReconcileState,
    SessionRecord,
    identity_from_parts,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from creditkeeper.domain.model import Identity
    from creditkeeper.domain.ports import LocalCache

log = getLogger(__name__)

SESSION_IDENTITY_KEY: Final[str] = "session.identity"
SESSION_AUTHENTICATED_KEY: Final[str] = "session.authenticated"
SESSION_VERIFIED_AT_KEY: Final[str] = "session.last_verified_at"
ONBOARDING_KEY: Final[str] = "onboarding_completed"

GUEST_ID_KEY: Final[str] = "guest.id"
GUEST_CREATED_AT_KEY: Final[str] = "guest.created_at"
GUEST_MIGRATION_KEY: Final[str] = "guest.migration"
GUEST_ARTIFACTS_KEY: Final[str] = "guest.artifacts"

JOURNAL_KEY: Final[str] = "transactions.journal"
MIRROR_PREFIX: Final[str] = "entitlement."
ARTIFACTS_PREFIX: Final[str] = "artifacts."

SESSION_KEYS: Final[tuple[str, ...]] = (
    SESSION_IDENTITY_KEY,
    SESSION_AUTHENTICATED_KEY,
    SESSION_VERIFIED_AT_KEY,
)
GUEST_KEYS: Final[tuple[str, ...]] = (
    GUEST_ID_KEY,
    GUEST_CREATED_AT_KEY,
    GUEST_MIGRATION_KEY,
    GUEST_ARTIFACTS_KEY,
)

_TRUE = "true"
_FALSE = "false"


def _dump_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _load_datetime(value: object) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    return datetime.fromisoformat(value)


class LocalState:
    def __init__(self, cache: LocalCache) -> None:
        self.cache = cache

    # Session -----------------------------------------------------------------

    def load_session(self) -> SessionRecord | None:
        raw_identity = self.cache.get(SESSION_IDENTITY_KEY)
        raw_authenticated = self.cache.get(SESSION_AUTHENTICATED_KEY)
        raw_verified = self.cache.get(SESSION_VERIFIED_AT_KEY)
        onboarding = self.onboarding_completed()
        if raw_identity is None and raw_authenticated is None and raw_verified is None:
            return None

        identity: Identity | None = None
        last_verified_at: datetime | None = None
        try:
            if raw_identity is not None:
                payload = cast(dict[str, Any], json.loads(raw_identity))
                identity = identity_from_parts(str(payload["kind"]), str(payload["id"]))
            last_verified_at = _load_datetime(raw_verified)
        except (ValueError, KeyError, TypeError):
            log.warning("Discarding unreadable cached session")
            return None

        return SessionRecord(
            identity=identity,
            authenticated=raw_authenticated == _TRUE and identity is not None,
            onboarding_completed=onboarding,
            last_verified_at=last_verified_at,
        )

    def save_session(self, record: SessionRecord) -> SessionRecord:
        """Persist ``record``; ``last_verified_at`` never moves backwards."""

        previous = self.load_session()
        verified_at = record.last_verified_at
        if previous is not None and previous.last_verified_at is not None:
            if verified_at is None or previous.last_verified_at > verified_at:
                verified_at = previous.last_verified_at

        if record.identity is None:
            self.cache.remove(SESSION_IDENTITY_KEY)
        else:
            self.cache.set(
                SESSION_IDENTITY_KEY,
                json.dumps({"kind": record.identity.KIND, "id": record.identity.subject_id}),
            )
        self.cache.set(SESSION_AUTHENTICATED_KEY, _TRUE if record.authenticated else _FALSE)
        if verified_at is not None:
            self.cache.set(SESSION_VERIFIED_AT_KEY, verified_at.isoformat())
        self.set_onboarding_completed(record.onboarding_completed)

        return SessionRecord(
            identity=record.identity,
            authenticated=record.authenticated,
            onboarding_completed=record.onboarding_completed,
            last_verified_at=verified_at,
        )

    def clear_session(self) -> None:
        """Drop cached session fields; the onboarding flag survives."""

        self.cache.remove_all(SESSION_KEYS)

    def onboarding_completed(self) -> bool:
        return self.cache.get(ONBOARDING_KEY) == _TRUE

    def set_onboarding_completed(self, value: bool) -> None:
        self.cache.set(ONBOARDING_KEY, _TRUE if value else _FALSE)

    def clear_onboarding(self) -> None:
        self.cache.remove(ONBOARDING_KEY)

    # Entitlement mirror ------------------------------------------------------

    def load_mirror(self, identity: Identity) -> EntitlementRecord | None:
        raw = self.cache.get(MIRROR_PREFIX + identity.cache_key)
        if raw is None:
            return None
        try:
            payload = cast(dict[str, Any], json.loads(raw))
            return EntitlementRecord(
                identity=identity,
                credits_current=int(payload["credits_current"]),
                credits_max=int(payload["credits_max"]),
                plan_id=payload.get("plan_id"),
                period_end=_load_datetime(payload.get("period_end")),
            )
        except (ValueError, KeyError, TypeError):
            log.warning("Discarding unreadable entitlement mirror for %s", identity.cache_key)
            return None

    def save_mirror(self, record: EntitlementRecord) -> None:
        payload = {
            "credits_current": record.credits_current,
            "credits_max": record.credits_max,
            "plan_id": record.plan_id,
            "period_end": _dump_datetime(record.period_end),
        }
        self.cache.set(MIRROR_PREFIX + record.identity.cache_key, json.dumps(payload))

    def clear_mirror(self, identity: Identity) -> None:
        self.cache.remove(MIRROR_PREFIX + identity.cache_key)

    # Guest record ------------------------------------------------------------

    def guest_id(self) -> str | None:
        return self.cache.get(GUEST_ID_KEY)

    def save_guest(self, guest_id: str, *, created_at: datetime) -> None:
        self.cache.set(GUEST_CREATED_AT_KEY, created_at.isoformat())
        self.cache.set(GUEST_ID_KEY, guest_id)

    def migration_state(self) -> MigrationState | None:
        raw = self.cache.get(GUEST_MIGRATION_KEY)
        if raw is None:
            return None
        try:
            payload = cast(dict[str, Any], json.loads(raw))
            return MigrationState(
                phase=MigrationPhase(payload["phase"]),
                target_user_id=str(payload["target_user_id"]),
            )
        except (ValueError, KeyError, TypeError):
            log.warning("Discarding unreadable guest migration state")
            return None

    def save_migration_state(self, state: MigrationState) -> None:
        self.cache.set(
            GUEST_MIGRATION_KEY,
            json.dumps({"phase": state.phase, "target_user_id": state.target_user_id}),
        )

    def guest_artifacts(self) -> list[GuestArtifact]:
        return self._load_artifacts(GUEST_ARTIFACTS_KEY)

    def save_guest_artifacts(self, artifacts: Iterable[GuestArtifact]) -> None:
        self._store_artifacts(GUEST_ARTIFACTS_KEY, artifacts)

    def clear_guest(self) -> None:
        self.cache.remove_all(GUEST_KEYS)

    def user_artifacts(self, user_id: str) -> list[GuestArtifact]:
        return self._load_artifacts(ARTIFACTS_PREFIX + user_id)

    def merge_user_artifacts(self, user_id: str, artifacts: Iterable[GuestArtifact]) -> int:
        """Add ``artifacts`` to the user's set by artifact id; returns how many were new."""

        existing = self.user_artifacts(user_id)
        known = {artifact.artifact_id for artifact in existing}
        added = [artifact for artifact in artifacts if artifact.artifact_id not in known]
        if added:
            self._store_artifacts(ARTIFACTS_PREFIX + user_id, [*existing, *added])
        return len(added)

    def _load_artifacts(self, key: str) -> list[GuestArtifact]:
        raw = self.cache.get(key)
        if raw is None:
            return []
        try:
            items = cast(list[dict[str, Any]], json.loads(raw))
            return [
                GuestArtifact(
                    artifact_id=str(item["artifact_id"]),
                    uri=str(item["uri"]),
                    created_at=datetime.fromisoformat(item["created_at"]),
                )
                for item in items
            ]
        except (ValueError, KeyError, TypeError):
            log.warning("Discarding unreadable artifact list under %s", key)
            return []

    def _store_artifacts(self, key: str, artifacts: Iterable[GuestArtifact]) -> None:
        payload = [
            {
                "artifact_id": artifact.artifact_id,
                "uri": artifact.uri,
                "created_at": artifact.created_at.isoformat(),
            }
            for artifact in artifacts
        ]
        self.cache.set(key, json.dumps(payload))

    # Transaction journal -----------------------------------------------------

    def load_journal(self) -> dict[str, JournalEntry]:
        raw = self.cache.get(JOURNAL_KEY)
        if raw is None:
            return {}
        try:
            payload = cast(dict[str, dict[str, Any]], json.loads(raw))
            return {
                transaction_id: JournalEntry(
                    transaction_id=transaction_id,
                    product_id=str(item["product_id"]),
                    state=ReconcileState(item["state"]),
                    updated_at=datetime.fromisoformat(item["updated_at"]),
                    attempts=int(item.get("attempts", 0)),
                    identity_key=item.get("identity_key"),
                )
                for transaction_id, item in payload.items()
            }
        except (ValueError, KeyError, TypeError, AttributeError):
            log.warning("Discarding unreadable transaction journal")
            return {}

    def journal_entry(self, transaction_id: str) -> JournalEntry | None:
        return self.load_journal().get(transaction_id)

    def save_journal_entry(self, entry: JournalEntry, *, limit: int) -> None:
        """Upsert ``entry`` and keep only the ``limit`` most recently updated entries."""

        journal = self.load_journal()
        journal[entry.transaction_id] = entry
        if len(journal) > limit:
            newest = sorted(journal.values(), key=lambda item: item.updated_at, reverse=True)
            journal = {item.transaction_id: item for item in newest[:limit]}
        payload = {
            item.transaction_id: {
                "product_id": item.product_id,
                "state": item.state,
                "updated_at": item.updated_at.isoformat(),
                "attempts": item.attempts,
                "identity_key": item.identity_key,
            }
            for item in journal.values()
        }
        self.cache.set(JOURNAL_KEY, json.dumps(payload))
