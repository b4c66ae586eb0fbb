"""Public interface for the remote profile API adapter."""

from __future__ import annotations

from .client import HttpProfileClient
from .schema import GrantResponse, ProfilePayload, SessionResponse
from .translator import error_kind, parse_profile, parse_session

__all__ = [
    "GrantResponse",
    "HttpProfileClient",
    "ProfilePayload",
    "SessionResponse",
    "error_kind",
    "parse_profile",
    "parse_session",
]
