from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from datetime import UTC, datetime

import httpx
import pytest

from creditkeeper.adapters.http_resilience import ResilienceConfig, ResilientClient, RetryPolicy
from creditkeeper.adapters.profile_api import HttpProfileClient
from creditkeeper.config.profile_api import ProfileApiConfig
from creditkeeper.domain.errors import InsufficientCredits, ProfileError, ProfileErrorKind
from creditkeeper.domain.model import GrantKind, GrantRequest, GrantStatus

BASE_URL = "https://profiles.test/v1/"
_NO_BACKOFF = RetryPolicy(backoff_factor=0.0, backoff_jitter=0.0)


def _make_client_factory(
    handler: Callable[[httpx.Request], httpx.Response],
) -> Callable[[ResilienceConfig], ResilientClient]:
    async def async_handler(request: httpx.Request) -> httpx.Response:
        return handler(request)

    def factory(resilience: ResilienceConfig) -> ResilientClient:
        return ResilientClient(resilience, transport=httpx.MockTransport(async_handler))

    return factory


def _client(
    handler: Callable[[httpx.Request], httpx.Response],
    *,
    access_token: str | None = "secret",
) -> HttpProfileClient:
    return HttpProfileClient(
        config=ProfileApiConfig(
            base_url=BASE_URL,
            access_token=access_token,
            resilience=ResilienceConfig(name="profile-api-test", retry=_NO_BACKOFF),
        ),
        client_factory=_make_client_factory(handler),
    )


def _profile_payload(**overrides: object) -> dict[str, object]:
    payload: dict[str, object] = {
        "id": "user-1",
        "credits_current": 12,
        "credits_max": 20,
        "onboarding_completed": True,
        "subscription_plan": "yearly",
        "subscription_end_date": "2026-03-01T00:00:00Z",
    }
    payload.update(overrides)
    return payload


def _call[T](client: HttpProfileClient, operation: Callable[[HttpProfileClient], T]) -> T:
    async def run() -> T:
        async with client:
            return await operation(client)  # type: ignore[misc]

    return asyncio.run(run())


def test_get_session_parses_user_and_sends_token() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={"session": {"userId": "user-1", "expiresAt": "2025-03-02T00:00:00Z"}},
        )

    session = _call(_client(handler), lambda client: client.get_session())

    assert session is not None
    assert session.user_id == "user-1"
    assert session.expires_at == datetime(2025, 3, 2, tzinfo=UTC)
    assert seen[0].url.path == "/v1/auth/session"
    assert seen[0].headers["Authorization"] == "Bearer secret"


def test_get_session_without_session_returns_none() -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"session": None})

    assert _call(_client(handler), lambda client: client.get_session()) is None


def test_get_profile_maps_subscription_fields() -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_profile_payload(subscription_plan="  "))

    profile = _call(_client(handler), lambda client: client.get_profile("user-1"))

    assert profile is not None
    assert profile.profile_id == "user-1"
    assert profile.credits_current == 12
    assert profile.credits_max == 20
    assert profile.onboarding_completed is True
    assert profile.plan_id is None
    assert profile.period_end == datetime(2026, 3, 1, tzinfo=UTC)


def test_get_profile_not_found_returns_none() -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "not_found"})

    assert _call(_client(handler), lambda client: client.get_profile("ghost")) is None


def test_apply_grant_sends_idempotency_key_and_body() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={"profile": _profile_payload(credits_current=22), "applied": False},
        )

    request = GrantRequest(
        transaction_id="tx-1",
        credit_delta=10,
        new_max=20,
        kind=GrantKind.TOP_UP,
        product_id="credits_10",
    )
    outcome = _call(
        _client(handler),
        lambda client: client.apply_grant("user-1", request, create_missing=True),
    )

    assert outcome.status is GrantStatus.DUPLICATE
    assert outcome.snapshot.credits_current == 22
    sent = seen[0]
    assert sent.method == "POST"
    assert sent.url.path == "/v1/profiles/user-1/grants"
    assert sent.headers["Idempotency-Key"] == "tx-1"
    body = json.loads(sent.content)
    assert body["transaction_id"] == "tx-1"
    assert body["credit_delta"] == 10
    assert body["kind"] == "top_up"
    assert body["create_missing"] is True
    assert "plan_id" not in body


@pytest.mark.parametrize(
    ("status_code", "code", "kind"),
    [
        (401, "token_expired", ProfileErrorKind.EXPIRED_TOKEN),
        (401, "malformed_token", ProfileErrorKind.MALFORMED_TOKEN),
        (403, None, ProfileErrorKind.INVALID_TOKEN),
        (409, "conflict", ProfileErrorKind.CONFLICT),
        (429, None, ProfileErrorKind.RATE_LIMITED),
        (400, None, ProfileErrorKind.SERVER),
    ],
)
def test_error_responses_map_to_kinds(
    status_code: int,
    code: str | None,
    kind: ProfileErrorKind,
) -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        payload = {"error": code} if code else {}
        return httpx.Response(status_code, json=payload)

    with pytest.raises(ProfileError) as excinfo:
        _call(_client(handler), lambda client: client.get_session())

    assert excinfo.value.kind is kind


def test_spend_with_insufficient_credits_raises_domain_error() -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(409, json={"error": "insufficient_credits"})

    with pytest.raises(InsufficientCredits):
        _call(_client(handler), lambda client: client.spend("user-1", 50))


def test_timeout_is_reported_as_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(ProfileError) as excinfo:
        _call(_client(handler), lambda client: client.sign_out())

    assert excinfo.value.kind is ProfileErrorKind.TIMEOUT
    assert not excinfo.value.invalidates_session


def test_unexpected_payload_is_a_server_error() -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"credits_current": -1})

    with pytest.raises(ProfileError) as excinfo:
        _call(_client(handler), lambda client: client.get_profile("user-1"))

    assert excinfo.value.kind is ProfileErrorKind.SERVER


def test_no_authorization_header_without_token() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    _call(_client(handler, access_token=None), lambda client: client.delete_profile("user-1"))

    assert seen[0].method == "DELETE"
    assert "Authorization" not in seen[0].headers


def test_reads_are_retried_on_server_errors() -> None:
    responses = [httpx.Response(503), httpx.Response(200, json={"session": None})]
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.method)
        return responses.pop(0)

    assert _call(_client(handler), lambda client: client.get_session()) is None
    assert calls == ["GET", "GET"]


def test_grants_are_retried_with_the_same_idempotency_key() -> None:
    keys: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        keys.append(request.headers["Idempotency-Key"])
        if len(keys) == 1:
            return httpx.Response(502)
        return httpx.Response(200, json={"profile": _profile_payload(), "applied": True})

    request = GrantRequest(transaction_id="tx-7", credit_delta=5, new_max=5)
    outcome = _call(_client(handler), lambda client: client.apply_grant("user-1", request))

    assert outcome.status is GrantStatus.APPLIED
    assert keys == ["tx-7", "tx-7"]


def test_spends_are_never_retried() -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(503)

    with pytest.raises(ProfileError) as excinfo:
        _call(_client(handler), lambda client: client.spend("user-1", 1))

    assert excinfo.value.kind is ProfileErrorKind.SERVER
    assert calls == ["/v1/profiles/user-1/spend"]
