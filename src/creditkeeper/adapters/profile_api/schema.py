"""Pydantic models describing the profile API payloads."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from creditkeeper.domain.model import GrantKind


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


class ProfileApiBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class SessionPayload(ProfileApiBaseModel):
    user_id: str = Field(alias="userId")
    expires_at: datetime | None = Field(default=None, alias="expiresAt")


class SessionResponse(ProfileApiBaseModel):
    session: SessionPayload | None = None


class ProfilePayload(ProfileApiBaseModel):
    id: str
    credits_current: int = Field(default=0, ge=0)
    credits_max: int = Field(default=0, ge=0)
    onboarding_completed: bool | None = None
    plan_id: str | None = Field(default=None, alias="subscription_plan")
    period_end: datetime | None = Field(default=None, alias="subscription_end_date")

    _normalize_plan = field_validator("plan_id", mode="before")(_blank_to_none)


class GrantPayload(ProfileApiBaseModel):
    transaction_id: str
    credit_delta: int = Field(ge=0)
    new_max: int = Field(ge=0)
    kind: GrantKind
    product_id: str | None = None
    plan_id: str | None = None
    period_end: datetime | None = None
    create_missing: bool = False


class GrantResponse(ProfileApiBaseModel):
    profile: ProfilePayload
    applied: bool


class SpendPayload(ProfileApiBaseModel):
    amount: int = Field(gt=0)


class ProfilePatchPayload(ProfileApiBaseModel):
    onboarding_completed: bool | None = None


class ErrorResponse(ProfileApiBaseModel):
    error: str
    message: str | None = None
