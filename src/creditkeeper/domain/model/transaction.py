"""Store transactions and their local reconciliation progress."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from creditkeeper.domain.model.enums import PurchaseStatus, ReconcileState, TransactionState

if TYPE_CHECKING:
    from datetime import datetime

    from creditkeeper.domain.model.entitlement import EntitlementRecord


@dataclass(frozen=True, slots=True)
class Transaction:
    """A store transaction; ``transaction_id`` is stable across redeliveries."""

    transaction_id: str
    product_id: str
    state: TransactionState


@dataclass(frozen=True, slots=True)
class JournalEntry:
    transaction_id: str
    product_id: str
    state: ReconcileState
    updated_at: datetime
    attempts: int = 0
    identity_key: str | None = None


@dataclass(frozen=True, slots=True)
class PurchaseOutcome:
    status: PurchaseStatus
    product_id: str
    transaction_id: str | None = None
    balance: EntitlementRecord | None = None
    message: str | None = None


@dataclass(slots=True)
class OrphanScanReport:
    outstanding: int = 0
    granted: int = 0
    duplicates: int = 0
    rejected: int = 0
    failed: int = 0
    scan_failed: bool = False
