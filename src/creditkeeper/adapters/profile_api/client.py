"""HTTP client for the remote profile API."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from logging import getLogger
from typing import TYPE_CHECKING, Unpack

import httpx
from pydantic import ValidationError

from creditkeeper.adapters.http_resilience import RequestOptions, ResilienceConfig, ResilientClient
from creditkeeper.config.http_resilience import IDEMPOTENCY_KEY_HEADER
from creditkeeper.config.profile_api import ProfileApiConfig
from creditkeeper.domain.errors import ProfileError, ProfileErrorKind

from .translator import (
    error_from_response,
    grant_body,
    parse_grant,
    parse_profile,
    parse_session,
    patch_body,
    spend_body,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from creditkeeper.domain.model import (
        GrantOutcome,
        GrantRequest,
        ProfilePatch,
        ProfileSnapshot,
        RemoteSession,
    )

log = getLogger(__name__)


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


@dataclass(slots=True)
class HttpProfileClient:
    config: ProfileApiConfig = field(default_factory=ProfileApiConfig.from_environment)
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=_default_client_factory
    )
    _client: ResilientClient | None = field(default=None, init=False, repr=False)

    async def __aenter__(self) -> HttpProfileClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get_session(self) -> RemoteSession | None:
        response = await self._request("GET", "auth/session")
        return self._parse(parse_session, response)

    async def get_profile(self, profile_id: str) -> ProfileSnapshot | None:
        response = await self._request("GET", f"profiles/{profile_id}", allow_not_found=True)
        if response is None:
            return None
        return self._parse(parse_profile, response)

    async def update_profile(self, profile_id: str, patch: ProfilePatch) -> None:
        await self._request("PATCH", f"profiles/{profile_id}", json=patch_body(patch))

    async def apply_grant(
        self,
        profile_id: str,
        request: GrantRequest,
        *,
        create_missing: bool = False,
    ) -> GrantOutcome:
        response = await self._request(
            "POST",
            f"profiles/{profile_id}/grants",
            json=grant_body(request, create_missing=create_missing),
            headers={IDEMPOTENCY_KEY_HEADER: request.transaction_id},
        )
        return self._parse(parse_grant, response)

    async def spend(self, profile_id: str, amount: int) -> ProfileSnapshot:
        response = await self._request(
            "POST",
            f"profiles/{profile_id}/spend",
            json=spend_body(amount),
        )
        return self._parse(parse_profile, response)

    async def sign_out(self) -> None:
        await self._request("POST", "auth/sign-out")

    async def delete_profile(self, profile_id: str) -> None:
        await self._request("DELETE", f"profiles/{profile_id}")

    def _http(self) -> ResilientClient:
        if self._client is None:
            self._client = self.client_factory(self._resilience())
        return self._client

    def _resilience(self) -> ResilienceConfig:
        resilience = self.config.resilience
        if resilience.base_url is None:
            resilience = replace(resilience, base_url=self.config.base_url)
        if self.config.access_token:
            headers = dict(resilience.default_headers or {})
            headers["Authorization"] = f"Bearer {self.config.access_token}"
            resilience = replace(resilience, default_headers=headers)
        return resilience

    async def _request(
        self,
        method: str,
        url: str,
        *,
        allow_not_found: bool = False,
        **kwargs: Unpack[RequestOptions],
    ) -> httpx.Response | None:
        try:
            response = await self._http().request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise ProfileError(f"{method} {url} timed out", kind=ProfileErrorKind.TIMEOUT) from exc
        except httpx.TransportError as exc:
            raise ProfileError(
                f"{method} {url} failed: {exc}", kind=ProfileErrorKind.NETWORK
            ) from exc

        if allow_not_found and response.status_code == httpx.codes.NOT_FOUND:
            return None
        if response.is_success:
            return response
        raise error_from_response(response)

    @staticmethod
    def _parse[T](parser: Callable[[object], T], response: httpx.Response | None) -> T:
        if response is None:
            raise ProfileError("Empty profile API response", kind=ProfileErrorKind.SERVER)
        try:
            return parser(response.json())
        except (ValueError, ValidationError) as exc:
            raise ProfileError(
                f"Unexpected profile API payload: {exc}", kind=ProfileErrorKind.SERVER
            ) from exc


if TYPE_CHECKING:
    from creditkeeper.domain.ports import RemoteProfileClient

    _client_check: RemoteProfileClient = HttpProfileClient()
