"""Entitlement ledger: canonical balance reads, idempotent grants and spends."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from creditkeeper.config.access import LedgerConfig
from creditkeeper.domain.catalog import ProductCatalog, default_catalog, next_period_end
from creditkeeper.domain.errors import (
    CacheUnavailable,
    InvalidSession,
    ProfileError,
    TransientNetworkError,
)
from creditkeeper.domain.model import (
    EntitlementRecord,
    GrantKind,
    GrantRequest,
    GrantStatus,
    ProfileSnapshot,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from creditkeeper.domain.local_state import LocalState
    from creditkeeper.domain.model import Identity
    from creditkeeper.domain.ports import RemoteProfileClient

log = getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class LedgerGrant:
    record: EntitlementRecord
    status: GrantStatus


class EntitlementLedger:
    """Owns every balance mutation.

    The remote profile store holds the canonical balance; ``apply_grant`` is the
    only path that adds credits and is idempotent on the transaction id. The
    local mirror is refreshed after each remote read or write and is used for
    display only.
    """

    def __init__(
        self,
        *,
        profiles: RemoteProfileClient,
        state: LocalState,
        config: LedgerConfig | None = None,
        catalog: ProductCatalog | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.profiles = profiles
        self.state = state
        self.config = config or LedgerConfig()
        self.catalog = catalog or default_catalog()
        self.clock = clock

    async def get_balance(self, identity: Identity) -> EntitlementRecord:
        """Read the canonical balance, renewing a lapsed credit period first."""

        snapshot = await self._call(
            self.profiles.get_profile(identity.subject_id),
            action="read balance",
        )
        if snapshot is None:
            if not identity.is_guest:
                raise InvalidSession(f"No profile exists for user {identity.subject_id}")
            snapshot = ProfileSnapshot(profile_id=identity.subject_id)
        snapshot = await self._renew_if_due(identity, snapshot)
        record = snapshot.entitlement(identity)
        self._refresh_mirror(record)
        return record

    async def apply_grant(
        self,
        identity: Identity,
        transaction_id: str,
        credit_delta: int,
        new_max: int,
        *,
        kind: GrantKind = GrantKind.TOP_UP,
        product_id: str | None = None,
        plan_id: str | None = None,
        period_end: datetime | None = None,
    ) -> EntitlementRecord:
        request = GrantRequest(
            transaction_id=transaction_id,
            credit_delta=credit_delta,
            new_max=new_max,
            kind=kind,
            product_id=product_id,
            plan_id=plan_id,
            period_end=period_end,
        )
        return (await self.grant(identity, request)).record

    async def grant(self, identity: Identity, request: GrantRequest) -> LedgerGrant:
        outcome = await self._call(
            self.profiles.apply_grant(
                identity.subject_id,
                request,
                create_missing=identity.is_guest,
            ),
            action=f"grant {request.transaction_id}",
        )
        if outcome.applied:
            log.info(
                "Granted %s credits to %s for %s",
                request.credit_delta,
                identity.cache_key,
                request.transaction_id,
            )
        else:
            log.info("Transaction %s already granted; balance unchanged", request.transaction_id)
        record = outcome.snapshot.entitlement(identity)
        self._refresh_mirror(record)
        return LedgerGrant(record=record, status=outcome.status)

    async def spend(self, identity: Identity, amount: int) -> EntitlementRecord:
        """Debit ``amount`` against the canonical balance; never consults the mirror."""

        if amount <= 0:
            raise ValueError("Spend amount must be positive")
        snapshot = await self._call(
            self.profiles.spend(identity.subject_id, amount),
            action=f"spend {amount} credits",
        )
        record = snapshot.entitlement(identity)
        self._refresh_mirror(record)
        return record

    def cached_balance(self, identity: Identity) -> EntitlementRecord | None:
        try:
            return self.state.load_mirror(identity)
        except CacheUnavailable:
            log.warning("Local cache unavailable; no cached balance for %s", identity.cache_key)
            return None

    async def _renew_if_due(
        self,
        identity: Identity,
        snapshot: ProfileSnapshot,
    ) -> ProfileSnapshot:
        plan_id = snapshot.plan_id
        period_end = snapshot.period_end
        now = self.clock()
        if plan_id is None or period_end is None or period_end > now:
            return snapshot
        if not self.catalog.renews_between_billing(plan_id):
            return snapshot
        product = self.catalog.plan(plan_id)
        if product is None:
            return snapshot

        # Missed periods are skipped, only the current one is granted.
        next_end = next_period_end(plan_id, period_end)
        while next_end <= now:
            next_end = next_period_end(plan_id, next_end)

        request = GrantRequest(
            transaction_id=f"renewal:{identity.subject_id}:{period_end.isoformat()}",
            credit_delta=product.credits,
            new_max=product.credits,
            kind=GrantKind.PERIOD,
            product_id=product.product_id,
            plan_id=plan_id,
            period_end=next_end,
        )
        log.info(
            "Renewing %s credits for %s (period ended %s)",
            plan_id,
            identity.cache_key,
            period_end,
        )
        outcome = await self._call(
            self.profiles.apply_grant(identity.subject_id, request),
            action=f"renew {plan_id} period",
        )
        return outcome.snapshot

    def _refresh_mirror(self, record: EntitlementRecord) -> None:
        try:
            self.state.save_mirror(record)
        except CacheUnavailable:
            log.warning("Could not refresh entitlement mirror for %s", record.identity.cache_key)

    async def _call[T](self, awaitable: Awaitable[T], *, action: str) -> T:
        try:
            async with asyncio.timeout(self.config.remote_timeout_seconds):
                return await awaitable
        except TimeoutError as exc:
            raise TransientNetworkError(f"Timed out trying to {action}") from exc
        except ProfileError as exc:
            if exc.invalidates_session:
                raise InvalidSession(f"Session rejected while trying to {action}: {exc}") from exc
            raise TransientNetworkError(f"Could not {action}: {exc}") from exc
