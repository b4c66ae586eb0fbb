"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class IdentityKind(StrEnum):
    REGISTERED = "registered"
    GUEST = "guest"


class DecisionSource(StrEnum):
    """Which signal tier produced an authorization decision."""

    REMOTE = "remote"
    CACHE = "cache"
    FALLBACK = "fallback"


class GrantKind(StrEnum):
    PERIOD = "period"  # establishes a new plan period
    TOP_UP = "top_up"  # consumable pack, purely additive


class GrantStatus(StrEnum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"


class ProductKind(StrEnum):
    CONSUMABLE = "consumable"
    SUBSCRIPTION = "subscription"


class TransactionState(StrEnum):
    """Transaction states as reported by the store."""

    PENDING = "pending"
    COMPLETED = "completed"
    ACKNOWLEDGED = "acknowledged"
    GRANTED = "granted"
    FAILED = "failed"
    REVOKED = "revoked"


class ReconcileState(StrEnum):
    """Local reconciliation progress for a single transaction."""

    OBSERVED = "observed"
    VERIFYING = "verifying"
    GRANTED = "granted"
    ACKNOWLEDGED = "acknowledged"
    FAILED = "failed"
    REJECTED = "rejected"
    DISCARDED = "discarded"

    @property
    def is_terminal(self) -> bool:
        return self in {
            ReconcileState.ACKNOWLEDGED,
            ReconcileState.REJECTED,
            ReconcileState.DISCARDED,
        }


class MigrationStatus(StrEnum):
    MIGRATED = "migrated"
    ALREADY_MIGRATED = "already_migrated"
    NO_GUEST = "no_guest"


class MigrationPhase(StrEnum):
    PENDING = "pending"
    CONSUMED = "consumed"


class PurchaseStatus(StrEnum):
    GRANTED = "granted"
    PENDING = "pending"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"
