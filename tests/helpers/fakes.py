"""In-memory stand-ins for the remote profile service, the store and the clock."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from creditkeeper.domain.errors import (
    CacheUnavailable,
    InsufficientCredits,
    ProfileError,
    ProfileErrorKind,
    PurchaseCancelled,
)
from creditkeeper.domain.model import (
    GrantOutcome,
    GrantStatus,
    Profile,
    ProfileSnapshot,
    RemoteSession,
    Transaction,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable, Sequence

    from creditkeeper.domain.model import GrantRequest, ProfilePatch


class FixedClock:
    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2025, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class FakeProfileClient:
    """Remote profile service kept in memory.

    Grants and spends are applied without yielding between check and write,
    which makes them atomic on a single event loop.
    """

    def __init__(self, *, session_user_id: str | None = None) -> None:
        self.session: RemoteSession | None = (
            RemoteSession(user_id=session_user_id) if session_user_id is not None else None
        )
        self.profiles: dict[str, Profile] = {}
        self.granted: dict[str, str] = {}
        self.session_error: ProfileError | None = None
        self.profile_error: ProfileError | None = None
        self.grant_error: ProfileError | None = None
        self.delete_error: ProfileError | None = None
        self.sign_out_error: ProfileError | None = None
        self.session_delay: float = 0.0
        self.profile_delay: float = 0.0
        self.session_calls = 0
        self.grant_calls = 0
        self.signed_out = False
        self.deleted: list[str] = []

    def add_profile(
        self,
        profile_id: str,
        *,
        credits: int = 0,
        credits_max: int | None = None,
        onboarding_completed: bool = False,
        plan_id: str | None = None,
        period_end: datetime | None = None,
    ) -> Profile:
        profile = Profile(
            id=profile_id,
            credits_current=credits,
            credits_max=credits if credits_max is None else credits_max,
            onboarding_completed=onboarding_completed,
            plan_id=plan_id,
            period_end=period_end,
        )
        self.profiles[profile_id] = profile
        return profile

    def balance(self, profile_id: str) -> int:
        return self.profiles[profile_id].credits_current

    async def get_session(self) -> RemoteSession | None:
        self.session_calls += 1
        if self.session_delay:
            await asyncio.sleep(self.session_delay)
        if self.session_error is not None:
            raise self.session_error
        return self.session

    async def get_profile(self, profile_id: str) -> ProfileSnapshot | None:
        if self.profile_delay:
            await asyncio.sleep(self.profile_delay)
        if self.profile_error is not None:
            raise self.profile_error
        profile = self.profiles.get(profile_id)
        return profile.snapshot() if profile is not None else None

    async def update_profile(self, profile_id: str, patch: ProfilePatch) -> None:
        profile = self._require(profile_id)
        if patch.onboarding_completed is not None:
            profile.onboarding_completed = patch.onboarding_completed

    async def apply_grant(
        self,
        profile_id: str,
        request: GrantRequest,
        *,
        create_missing: bool = False,
    ) -> GrantOutcome:
        self.grant_calls += 1
        await asyncio.sleep(0)
        if self.grant_error is not None:
            raise self.grant_error
        if request.transaction_id in self.granted:
            snapshot = self._snapshot_or_empty(profile_id)
            return GrantOutcome(snapshot=snapshot, status=GrantStatus.DUPLICATE)
        profile = self.profiles.get(profile_id)
        if profile is None:
            if not create_missing:
                raise ProfileError(f"No profile {profile_id}", kind=ProfileErrorKind.NOT_FOUND)
            profile = self.add_profile(profile_id)
        profile.apply_grant(request)
        self.granted[request.transaction_id] = profile_id
        return GrantOutcome(snapshot=profile.snapshot(), status=GrantStatus.APPLIED)

    async def spend(self, profile_id: str, amount: int) -> ProfileSnapshot:
        await asyncio.sleep(0)
        profile = self._require(profile_id)
        if not profile.debit(amount):
            raise InsufficientCredits("Insufficient credits", available=profile.credits_current)
        return profile.snapshot()

    async def sign_out(self) -> None:
        if self.sign_out_error is not None:
            raise self.sign_out_error
        self.signed_out = True
        self.session = None

    async def delete_profile(self, profile_id: str) -> None:
        if self.delete_error is not None:
            raise self.delete_error
        self._require(profile_id)
        del self.profiles[profile_id]
        self.deleted.append(profile_id)

    def _require(self, profile_id: str) -> Profile:
        profile = self.profiles.get(profile_id)
        if profile is None:
            raise ProfileError(f"No profile {profile_id}", kind=ProfileErrorKind.NOT_FOUND)
        return profile

    def _snapshot_or_empty(self, profile_id: str) -> ProfileSnapshot:
        profile = self.profiles.get(profile_id)
        if profile is None:
            return ProfileSnapshot(profile_id=profile_id)
        return profile.snapshot()


class FakeTransactionStream:
    def __init__(
        self,
        *,
        outstanding: Iterable[Transaction] = (),
        events: Iterable[Transaction] = (),
    ) -> None:
        self.outstanding: dict[str, Transaction] = {
            transaction.transaction_id: transaction for transaction in outstanding
        }
        self.queued_events: list[Transaction] = list(events)
        self.acknowledged: list[str] = []
        self.purchase_result: Transaction | None = None
        self.purchase_cancelled = False
        self.purchase_delay: float = 0.0
        self.ack_delay: float = 0.0
        self.list_delay: float = 0.0

    async def events(self) -> AsyncIterator[Transaction]:
        for transaction in self.queued_events:
            await asyncio.sleep(0)
            yield transaction

    async def list_outstanding(self) -> Sequence[Transaction]:
        if self.list_delay:
            await asyncio.sleep(self.list_delay)
        return list(self.outstanding.values())

    async def acknowledge(self, transaction_id: str) -> None:
        if self.ack_delay:
            await asyncio.sleep(self.ack_delay)
        self.acknowledged.append(transaction_id)
        self.outstanding.pop(transaction_id, None)

    async def request_purchase(self, product_id: str) -> Transaction:
        if self.purchase_delay:
            await asyncio.sleep(self.purchase_delay)
        if self.purchase_cancelled:
            raise PurchaseCancelled(f"Purchase of {product_id} cancelled")
        if self.purchase_result is None:
            raise AssertionError("No purchase result configured")
        return self.purchase_result


class BrokenCache:
    """Local cache whose backing store is gone."""

    def get(self, key: str) -> str | None:
        raise CacheUnavailable(f"cannot read {key}")

    def set(self, key: str, value: str) -> None:
        raise CacheUnavailable(f"cannot write {key}")

    def remove(self, key: str) -> None:
        raise CacheUnavailable(f"cannot remove {key}")

    def remove_all(self, keys: Sequence[str]) -> None:
        raise CacheUnavailable("cannot remove keys")
