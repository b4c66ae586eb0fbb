from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from creditkeeper.config import LedgerConfig
from creditkeeper.domain.errors import (
    InsufficientCredits,
    InvalidSession,
    ProfileError,
    ProfileErrorKind,
    TransientNetworkError,
)
from creditkeeper.domain.ledger import EntitlementLedger
from creditkeeper.domain.model import (
    GrantKind,
    GrantRequest,
    GrantStatus,
    GuestIdentity,
    RegisteredIdentity,
)

if TYPE_CHECKING:
    from creditkeeper.domain.local_state import LocalState
    from tests.helpers.fakes import FakeProfileClient, FixedClock

USER = RegisteredIdentity("user-1")


def _ledger(
    profiles: FakeProfileClient,
    state: LocalState,
    clock: FixedClock,
    *,
    timeout: float = 1.0,
) -> EntitlementLedger:
    return EntitlementLedger(
        profiles=profiles,
        state=state,
        config=LedgerConfig(remote_timeout_seconds=timeout),
        clock=clock,
    )


def test_apply_grant_is_idempotent_on_transaction_id(
    profiles: FakeProfileClient,
    state: LocalState,
    clock: FixedClock,
) -> None:
    profiles.add_profile(USER.user_id, credits=5)
    ledger = _ledger(profiles, state, clock)

    first = asyncio.run(ledger.apply_grant(USER, "tx-1", 15, 15))
    second = asyncio.run(ledger.apply_grant(USER, "tx-1", 15, 15))

    assert first.credits_current == 20
    assert second.credits_current == 20
    assert profiles.balance(USER.user_id) == 20


def test_concurrent_grants_for_one_transaction_apply_once(
    profiles: FakeProfileClient,
    state: LocalState,
    clock: FixedClock,
) -> None:
    profiles.add_profile(USER.user_id)
    ledger = _ledger(profiles, state, clock)

    request = GrantRequest(transaction_id="tx-dup", credit_delta=45, new_max=45)

    async def run() -> list[GrantStatus]:
        grants = await asyncio.gather(*(ledger.grant(USER, request) for _ in range(10)))
        return [grant.status for grant in grants]

    statuses = asyncio.run(run())

    assert statuses.count(GrantStatus.APPLIED) == 1
    assert statuses.count(GrantStatus.DUPLICATE) == 9
    assert profiles.balance(USER.user_id) == 45


def test_grant_reports_duplicate_status(
    profiles: FakeProfileClient,
    state: LocalState,
    clock: FixedClock,
) -> None:
    profiles.add_profile(USER.user_id)
    ledger = _ledger(profiles, state, clock)
    product = ledger.catalog.get("starter.25")
    assert product is not None
    request = ledger.catalog.grant_for(
        product,
        transaction_id="tx-2",
        purchased_at=clock(),
    )

    first = asyncio.run(ledger.grant(USER, request))
    second = asyncio.run(ledger.grant(USER, request))

    assert first.status is GrantStatus.APPLIED
    assert second.status is GrantStatus.DUPLICATE
    assert second.record.credits_current == 15


def test_period_grant_uses_max_of_sum_and_delta(
    profiles: FakeProfileClient,
    state: LocalState,
    clock: FixedClock,
) -> None:
    profiles.add_profile(USER.user_id, credits=10, credits_max=120)
    ledger = _ledger(profiles, state, clock)

    record = asyncio.run(
        ledger.apply_grant(
            USER,
            "tx-sub",
            75,
            75,
            kind=GrantKind.PERIOD,
            plan_id="monthly",
            period_end=clock() + timedelta(days=30),
        )
    )

    assert record.credits_current == 85
    assert record.credits_max == 120


def test_get_balance_refreshes_mirror(
    profiles: FakeProfileClient,
    state: LocalState,
    clock: FixedClock,
) -> None:
    profiles.add_profile(USER.user_id, credits=12, credits_max=45)
    ledger = _ledger(profiles, state, clock)

    record = asyncio.run(ledger.get_balance(USER))

    assert (record.credits_current, record.credits_max) == (12, 45)
    assert ledger.cached_balance(USER) == record


def test_guest_without_profile_has_empty_balance(
    profiles: FakeProfileClient,
    state: LocalState,
    clock: FixedClock,
) -> None:
    ledger = _ledger(profiles, state, clock)

    record = asyncio.run(ledger.get_balance(GuestIdentity("guest-1")))

    assert (record.credits_current, record.credits_max) == (0, 0)


def test_registered_identity_without_profile_is_invalid(
    profiles: FakeProfileClient,
    state: LocalState,
    clock: FixedClock,
) -> None:
    ledger = _ledger(profiles, state, clock)

    with pytest.raises(InvalidSession):
        asyncio.run(ledger.get_balance(USER))


def test_guest_grant_creates_profile(
    profiles: FakeProfileClient,
    state: LocalState,
    clock: FixedClock,
) -> None:
    ledger = _ledger(profiles, state, clock)

    record = asyncio.run(ledger.apply_grant(GuestIdentity("guest-1"), "tx-g", 10, 10))

    assert record.credits_current == 10
    assert profiles.balance("guest-1") == 10


def test_remote_timeout_becomes_transient_error(
    profiles: FakeProfileClient,
    state: LocalState,
    clock: FixedClock,
) -> None:
    profiles.add_profile(USER.user_id)
    profiles.profile_delay = 1.0
    ledger = _ledger(profiles, state, clock, timeout=0.01)

    with pytest.raises(TransientNetworkError):
        asyncio.run(ledger.get_balance(USER))


def test_rejected_token_becomes_invalid_session(
    profiles: FakeProfileClient,
    state: LocalState,
    clock: FixedClock,
) -> None:
    profiles.add_profile(USER.user_id)
    profiles.grant_error = ProfileError("expired", kind=ProfileErrorKind.EXPIRED_TOKEN)
    ledger = _ledger(profiles, state, clock)

    with pytest.raises(InvalidSession):
        asyncio.run(ledger.apply_grant(USER, "tx-3", 1, 1))


def test_yearly_plan_renews_lapsed_period_once(
    profiles: FakeProfileClient,
    state: LocalState,
    clock: FixedClock,
) -> None:
    lapsed = clock() - timedelta(days=1)
    profiles.add_profile(
        USER.user_id,
        credits=5,
        credits_max=90,
        plan_id="yearly",
        period_end=lapsed,
    )
    ledger = _ledger(profiles, state, clock)

    async def run() -> None:
        await asyncio.gather(ledger.get_balance(USER), ledger.get_balance(USER))

    asyncio.run(run())
    record = asyncio.run(ledger.get_balance(USER))

    assert record.credits_current == 95
    assert record.period_end is not None
    assert record.period_end > clock()
    assert f"renewal:{USER.user_id}:{lapsed.isoformat()}" in profiles.granted


def test_missed_periods_are_not_backfilled(
    profiles: FakeProfileClient,
    state: LocalState,
    clock: FixedClock,
) -> None:
    profiles.add_profile(
        USER.user_id,
        credits=0,
        plan_id="yearly",
        period_end=clock() - timedelta(days=100),
    )
    ledger = _ledger(profiles, state, clock)

    record = asyncio.run(ledger.get_balance(USER))

    assert record.credits_current == 90
    assert record.period_end is not None
    assert clock() < record.period_end <= clock() + timedelta(days=31)


def test_monthly_plan_waits_for_store_renewal(
    profiles: FakeProfileClient,
    state: LocalState,
    clock: FixedClock,
) -> None:
    profiles.add_profile(
        USER.user_id,
        credits=3,
        plan_id="monthly",
        period_end=clock() - timedelta(days=1),
    )
    ledger = _ledger(profiles, state, clock)

    record = asyncio.run(ledger.get_balance(USER))

    assert record.credits_current == 3
    assert profiles.grant_calls == 0


def test_spend_debits_canonical_balance(
    profiles: FakeProfileClient,
    state: LocalState,
    clock: FixedClock,
) -> None:
    profiles.add_profile(USER.user_id, credits=10)
    ledger = _ledger(profiles, state, clock)

    record = asyncio.run(ledger.spend(USER, 4))

    assert record.credits_current == 6
    mirror = ledger.cached_balance(USER)
    assert mirror is not None
    assert mirror.credits_current == 6


def test_spend_never_overdraws(
    profiles: FakeProfileClient,
    state: LocalState,
    clock: FixedClock,
) -> None:
    profiles.add_profile(USER.user_id, credits=3)
    ledger = _ledger(profiles, state, clock)

    with pytest.raises(InsufficientCredits) as exc:
        asyncio.run(ledger.spend(USER, 5))

    assert exc.value.available == 3
    assert profiles.balance(USER.user_id) == 3
