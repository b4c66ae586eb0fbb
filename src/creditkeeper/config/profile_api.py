"""Configuration for the remote profile HTTP API."""

from __future__ import annotations

from dataclasses import dataclass, field

from .env import optional_env, optional_env_float, require_env_vars
from .http_resilience import RateLimit, ResilienceConfig

PROFILE_API_URL_ENV = "PROFILE_API_URL"
PROFILE_API_TOKEN_ENV = "PROFILE_API_TOKEN"
PROFILE_API_TIMEOUT_ENV = "PROFILE_API_TIMEOUT"

_DEFAULT_TIMEOUT_SECONDS = 6.0


def _default_resilience() -> ResilienceConfig:
    return ResilienceConfig(name="profile-api")


@dataclass(frozen=True, slots=True)
class ProfileApiConfig:
    base_url: str
    access_token: str | None = None
    resilience: ResilienceConfig = field(default_factory=_default_resilience)

    @classmethod
    def from_environment(cls) -> ProfileApiConfig:
        return get_profile_api_config()


def get_profile_api_config() -> ProfileApiConfig:
    values = require_env_vars([PROFILE_API_URL_ENV])
    base_url = values[PROFILE_API_URL_ENV].rstrip("/") + "/"
    resilience = ResilienceConfig(
        name="profile-api",
        base_url=base_url,
        timeout_seconds=optional_env_float(PROFILE_API_TIMEOUT_ENV, _DEFAULT_TIMEOUT_SECONDS),
        ratelimit=RateLimit(max_calls=10, per_seconds=1.0),
    )
    return ProfileApiConfig(
        base_url=base_url,
        access_token=optional_env(PROFILE_API_TOKEN_ENV),
        resilience=resilience,
    )
