"""Domain model for sessions, identities, entitlements and transactions."""

from __future__ import annotations

from .entitlement import (
    EntitlementRecord,
    GrantEntry,
    GrantOutcome,
    GrantRequest,
    Profile,
    ProfilePatch,
    ProfileSnapshot,
    granted_balance,
)
from .enums import (
    DecisionSource,
    GrantKind,
    GrantStatus,
    IdentityKind,
    MigrationPhase,
    MigrationStatus,
    ProductKind,
    PurchaseStatus,
    ReconcileState,
    TransactionState,
)
from .guest import GuestArtifact, MigrationResult, MigrationState
from .identity import GuestIdentity, Identity, RegisteredIdentity, identity_from_parts
from .session import AuthDecision, RemoteSession, SessionRecord, SessionToken
from .transaction import JournalEntry, OrphanScanReport, PurchaseOutcome, Transaction

__all__ = [
    "AuthDecision",
    "DecisionSource",
    "EntitlementRecord",
    "GrantEntry",
    "GrantKind",
    "GrantOutcome",
    "GrantRequest",
    "GrantStatus",
    "GuestArtifact",
    "GuestIdentity",
    "Identity",
    "IdentityKind",
    "JournalEntry",
    "MigrationPhase",
    "MigrationResult",
    "MigrationState",
    "MigrationStatus",
    "OrphanScanReport",
    "ProductKind",
    "Profile",
    "ProfilePatch",
    "ProfileSnapshot",
    "PurchaseOutcome",
    "PurchaseStatus",
    "ReconcileState",
    "RegisteredIdentity",
    "RemoteSession",
    "SessionRecord",
    "SessionToken",
    "Transaction",
    "TransactionState",
    "granted_balance",
    "identity_from_parts",
]
