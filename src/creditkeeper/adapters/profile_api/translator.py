"""Translate profile API payloads into domain values and typed errors."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

from pydantic import ValidationError

from creditkeeper.domain.errors import InsufficientCredits, ProfileError, ProfileErrorKind
from creditkeeper.domain.model import (
    GrantOutcome,
    GrantStatus,
    ProfileSnapshot,
    RemoteSession,
)

from .schema import (
    ErrorResponse,
    GrantPayload,
    GrantResponse,
    ProfilePatchPayload,
    ProfilePayload,
    SessionResponse,
    SpendPayload,
)

if TYPE_CHECKING:
    import httpx

    from creditkeeper.domain.model import GrantRequest, ProfilePatch

log = getLogger(__name__)

_TOKEN_ERROR_KINDS = {
    "token_expired": ProfileErrorKind.EXPIRED_TOKEN,
    "invalid_token": ProfileErrorKind.INVALID_TOKEN,
    "malformed_token": ProfileErrorKind.MALFORMED_TOKEN,
}

INSUFFICIENT_CREDITS_CODE = "insufficient_credits"


def parse_session(payload: object) -> RemoteSession | None:
    response = SessionResponse.model_validate(payload)
    if response.session is None:
        return None
    return RemoteSession(user_id=response.session.user_id, expires_at=response.session.expires_at)


def parse_profile(payload: object) -> ProfileSnapshot:
    return _snapshot(ProfilePayload.model_validate(payload))


def parse_grant(payload: object) -> GrantOutcome:
    response = GrantResponse.model_validate(payload)
    return GrantOutcome(
        snapshot=_snapshot(response.profile),
        status=GrantStatus.APPLIED if response.applied else GrantStatus.DUPLICATE,
    )


def _snapshot(profile: ProfilePayload) -> ProfileSnapshot:
    return ProfileSnapshot(
        profile_id=profile.id,
        credits_current=profile.credits_current,
        credits_max=profile.credits_max,
        onboarding_completed=profile.onboarding_completed,
        plan_id=profile.plan_id,
        period_end=profile.period_end,
    )


def grant_body(request: GrantRequest, *, create_missing: bool) -> dict[str, object]:
    payload = GrantPayload(
        transaction_id=request.transaction_id,
        credit_delta=request.credit_delta,
        new_max=request.new_max,
        kind=request.kind,
        product_id=request.product_id,
        plan_id=request.plan_id,
        period_end=request.period_end,
        create_missing=create_missing,
    )
    return payload.model_dump(mode="json", exclude_none=True)


def spend_body(amount: int) -> dict[str, object]:
    return SpendPayload(amount=amount).model_dump(mode="json")


def patch_body(patch: ProfilePatch) -> dict[str, object]:
    return ProfilePatchPayload(onboarding_completed=patch.onboarding_completed).model_dump(
        mode="json",
        exclude_none=True,
    )


def error_code(response: httpx.Response) -> str | None:
    try:
        return ErrorResponse.model_validate(response.json()).error
    except (ValueError, ValidationError):
        return None


def error_kind(status_code: int, code: str | None) -> ProfileErrorKind:
    match status_code:
        case 401 | 403:
            return _TOKEN_ERROR_KINDS.get(code or "", ProfileErrorKind.INVALID_TOKEN)
        case 404:
            return ProfileErrorKind.NOT_FOUND
        case 408:
            return ProfileErrorKind.TIMEOUT
        case 409:
            return ProfileErrorKind.CONFLICT
        case 429:
            return ProfileErrorKind.RATE_LIMITED
        case _:
            return ProfileErrorKind.SERVER


def error_from_response(response: httpx.Response) -> ProfileError | InsufficientCredits:
    code = error_code(response)
    if response.status_code == 409 and code == INSUFFICIENT_CREDITS_CODE:
        return InsufficientCredits("Insufficient credits")
    kind = error_kind(response.status_code, code)
    log.warning(
        "Profile API %s %s failed: status=%s code=%s",
        response.request.method,
        response.request.url.path,
        response.status_code,
        code,
    )
    return ProfileError(
        f"Profile API returned {response.status_code} ({code or 'no code'})",
        kind=kind,
    )
