"""Credit balances, grant requests and the balance update rules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from creditkeeper.domain.model.enums import GrantKind, GrantStatus

if TYPE_CHECKING:
    from creditkeeper.domain.model.identity import Identity


@dataclass(frozen=True, slots=True)
class EntitlementRecord:
    identity: Identity
    credits_current: int
    credits_max: int
    plan_id: str | None = None
    period_end: datetime | None = None

    def __post_init__(self) -> None:
        if self.credits_current < 0 or self.credits_max < 0:
            raise ValueError("Credit counts must be non-negative")


@dataclass(frozen=True, slots=True)
class ProfileSnapshot:
    """Canonical profile fields as returned by the remote profile service."""

    profile_id: str
    credits_current: int = 0
    credits_max: int = 0
    onboarding_completed: bool | None = None
    plan_id: str | None = None
    period_end: datetime | None = None

    def entitlement(self, identity: Identity) -> EntitlementRecord:
        return EntitlementRecord(
            identity=identity,
            credits_current=self.credits_current,
            credits_max=self.credits_max,
            plan_id=self.plan_id,
            period_end=self.period_end,
        )


@dataclass(frozen=True, slots=True)
class ProfilePatch:
    onboarding_completed: bool | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class GrantRequest:
    transaction_id: str
    credit_delta: int
    new_max: int
    kind: GrantKind = GrantKind.TOP_UP
    product_id: str | None = None
    plan_id: str | None = None
    period_end: datetime | None = None

    def __post_init__(self) -> None:
        if not self.transaction_id:
            raise ValueError("Grant requires a transaction id")
        if self.credit_delta < 0 or self.new_max < 0:
            raise ValueError("Grant amounts must be non-negative")


@dataclass(frozen=True, slots=True)
class GrantOutcome:
    snapshot: ProfileSnapshot
    status: GrantStatus

    @property
    def applied(self) -> bool:
        return self.status is GrantStatus.APPLIED


def granted_balance(current: int, request: GrantRequest) -> int:
    """Return the balance after ``request`` is applied to ``current``."""

    if request.kind is GrantKind.PERIOD:
        return max(current + request.credit_delta, request.credit_delta)
    return current + request.credit_delta


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(eq=False, kw_only=True)
class Profile:
    """Canonical profile row. Mutated only inside an atomic store operation."""

    id: str
    credits_current: int = 0
    credits_max: int = 0
    onboarding_completed: bool = False
    plan_id: str | None = None
    period_end: datetime | None = None
    version: int = 1
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def apply_grant(self, request: GrantRequest) -> None:
        self.credits_current = granted_balance(self.credits_current, request)
        self.credits_max = max(self.credits_max, request.new_max)
        if request.kind is GrantKind.PERIOD:
            self.plan_id = request.plan_id or self.plan_id
            self.period_end = request.period_end
        self.updated_at = _utcnow()

    def debit(self, amount: int) -> bool:
        if amount <= 0:
            raise ValueError("Spend amount must be positive")
        if self.credits_current < amount:
            return False
        self.credits_current -= amount
        self.updated_at = _utcnow()
        return True

    def snapshot(self) -> ProfileSnapshot:
        return ProfileSnapshot(
            profile_id=self.id,
            credits_current=self.credits_current,
            credits_max=self.credits_max,
            onboarding_completed=self.onboarding_completed,
            plan_id=self.plan_id,
            period_end=self.period_end,
        )


@dataclass(eq=False, kw_only=True)
class GrantEntry:
    """Record that ``transaction_id`` has been granted; unique per transaction."""

    transaction_id: str
    profile_id: str
    credit_delta: int
    kind: GrantKind
    product_id: str | None = None
    granted_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def from_request(cls, profile_id: str, request: GrantRequest) -> GrantEntry:
        return cls(
            transaction_id=request.transaction_id,
            profile_id=profile_id,
            credit_delta=request.credit_delta,
            kind=request.kind,
            product_id=request.product_id,
        )
