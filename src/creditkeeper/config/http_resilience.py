"""Configuration types for the resilient profile API transport."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from collections.abc import Mapping

IDEMPOTENCY_KEY_HEADER = "Idempotency-Key"


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """When a failed request may be sent again.

    Methods in ``idempotent_methods`` are always replayable. Any other method is
    replayable only when the request carries ``replay_header``; a grant carries it,
    a spend does not.
    """

    total: int = 3
    backoff_factor: float = 0.5
    max_backoff_wait: float = 10.0
    respect_retry_after_header: bool = True
    idempotent_methods: frozenset[str] = field(
        default_factory=lambda: frozenset({"DELETE", "GET", "HEAD", "OPTIONS", "PATCH", "PUT"})
    )
    replay_header: str | None = IDEMPOTENCY_KEY_HEADER
    status_forcelist: frozenset[int] = field(
        default_factory=lambda: frozenset({429, 500, 502, 503, 504})
    )
    retry_on_exceptions: tuple[type[httpx.HTTPError], ...] = (
        httpx.TimeoutException,
        httpx.NetworkError,
        httpx.RemoteProtocolError,
    )
    backoff_jitter: float = 1.0

    def is_replayable(self, request: httpx.Request) -> bool:
        if request.method in self.idempotent_methods:
            return True
        return self.replay_header is not None and self.replay_header in request.headers


@dataclass(slots=True, frozen=True)
class RateLimit:
    max_calls: int
    per_seconds: float


@dataclass(slots=True, frozen=True)
class ResilienceConfig:
    name: str
    base_url: str | None = None
    timeout_seconds: float = 10.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    ratelimit: RateLimit | None = None
    default_headers: Mapping[str, str] | None = None
