"""Timeouts and limits for session resolution, grants and purchase reconciliation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Final

from .env import optional_env_float

# Trust windows for a cached session after the remote check fails.
ONBOARDED_MAX_CACHE_AGE: Final[timedelta] = timedelta(hours=6)
DEFAULT_MAX_CACHE_AGE: Final[timedelta] = timedelta(hours=1)

JOURNAL_LIMIT: Final[int] = 1000


@dataclass(frozen=True, slots=True)
class ResolverConfig:
    remote_timeout_seconds: float = 8.0
    resolution_deadline_seconds: float = 12.0
    onboarded_max_cache_age: timedelta = ONBOARDED_MAX_CACHE_AGE
    max_cache_age: timedelta = DEFAULT_MAX_CACHE_AGE

    def cache_age_limit(self, *, onboarding_completed: bool) -> timedelta:
        return self.onboarded_max_cache_age if onboarding_completed else self.max_cache_age


@dataclass(frozen=True, slots=True)
class LedgerConfig:
    remote_timeout_seconds: float = 8.0


@dataclass(frozen=True, slots=True)
class ReconcilerConfig:
    store_timeout_seconds: float = 15.0
    purchase_timeout_seconds: float = 120.0
    max_concurrent_callbacks: int = 4
    journal_limit: int = JOURNAL_LIMIT


@dataclass(frozen=True, slots=True)
class SignInWaitConfig:
    deadline_seconds: float = 15.0
    interval_seconds: float = 0.5
    backoff_factor: float = 1.0
    max_interval_seconds: float = 4.0


@dataclass(frozen=True, slots=True)
class AccessConfig:
    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    reconciler: ReconcilerConfig = field(default_factory=ReconcilerConfig)
    sign_in: SignInWaitConfig = field(default_factory=SignInWaitConfig)


def get_access_config() -> AccessConfig:
    """Build the access configuration, honouring ``CREDITKEEPER_*`` overrides."""

    remote_timeout = optional_env_float("CREDITKEEPER_REMOTE_TIMEOUT", 8.0)
    resolver = ResolverConfig(
        remote_timeout_seconds=remote_timeout,
        resolution_deadline_seconds=optional_env_float(
            "CREDITKEEPER_RESOLUTION_DEADLINE", max(12.0, remote_timeout + 4.0)
        ),
    )
    ledger = LedgerConfig(remote_timeout_seconds=remote_timeout)
    reconciler = ReconcilerConfig(
        store_timeout_seconds=optional_env_float("CREDITKEEPER_STORE_TIMEOUT", 15.0),
        purchase_timeout_seconds=optional_env_float("CREDITKEEPER_PURCHASE_TIMEOUT", 120.0),
    )
    sign_in = SignInWaitConfig(
        deadline_seconds=optional_env_float("CREDITKEEPER_SIGN_IN_DEADLINE", 15.0),
    )
    return AccessConfig(resolver=resolver, ledger=ledger, reconciler=reconciler, sign_in=sign_in)
