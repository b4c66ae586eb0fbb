"""Typed error taxonomy for session resolution, grants and purchases."""

from __future__ import annotations

from enum import StrEnum


class ErrorClass(StrEnum):
    INVALIDATING = "invalidating"
    TRANSIENT = "transient"


class ProfileErrorKind(StrEnum):
    """Closed set of failures reported by the remote profile boundary."""

    EXPIRED_TOKEN = "expired_token"
    INVALID_TOKEN = "invalid_token"
    MALFORMED_TOKEN = "malformed_token"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    NETWORK = "network"
    SERVER = "server"
    RATE_LIMITED = "rate_limited"
    CONFLICT = "conflict"


def classify(kind: ProfileErrorKind) -> ErrorClass:
    match kind:
        case (
            ProfileErrorKind.EXPIRED_TOKEN
            | ProfileErrorKind.INVALID_TOKEN
            | ProfileErrorKind.MALFORMED_TOKEN
        ):
            return ErrorClass.INVALIDATING
        case (
            ProfileErrorKind.NOT_FOUND
            | ProfileErrorKind.TIMEOUT
            | ProfileErrorKind.NETWORK
            | ProfileErrorKind.SERVER
            | ProfileErrorKind.RATE_LIMITED
            | ProfileErrorKind.CONFLICT
        ):
            return ErrorClass.TRANSIENT


class ProfileError(RuntimeError):
    """Raised by remote profile clients; ``kind`` drives all handling."""

    def __init__(self, message: str, *, kind: ProfileErrorKind) -> None:
        super().__init__(message)
        self.kind = kind

    @property
    def error_class(self) -> ErrorClass:
        return classify(self.kind)

    @property
    def invalidates_session(self) -> bool:
        return self.error_class is ErrorClass.INVALIDATING


class AccessError(RuntimeError):
    """Base class for errors that cross component boundaries."""

    user_facing: bool = False


class ResolutionTimeout(AccessError):
    """Every signal source (remote, cache, guest) was unavailable."""


class InvalidSession(AccessError):
    """The remote service no longer recognises the session."""


class TransientNetworkError(AccessError):
    """A remote call timed out or failed in a way worth retrying."""


class OrphanRecoveryFailure(AccessError):
    """An outstanding transaction could not be granted during a scan."""

    def __init__(self, message: str, *, transaction_id: str) -> None:
        super().__init__(message)
        self.transaction_id = transaction_id


class PurchaseRejected(AccessError):
    user_facing = True

    def __init__(self, message: str, *, product_id: str | None = None) -> None:
        super().__init__(message)
        self.product_id = product_id


class AccountDeletionFailed(AccessError):
    user_facing = True


class InsufficientCredits(AccessError):
    user_facing = True

    def __init__(self, message: str, *, available: int | None = None) -> None:
        super().__init__(message)
        self.available = available


class MigrationFailed(AccessError):
    """Guest state could not be written under the new account; safe to retry."""


class CacheUnavailable(AccessError):
    """The local cache could not be read or written."""


class SignInTimeout(AccessError):
    """No session appeared before the sign-in deadline."""


class NoActiveIdentity(AccessError):
    """An operation needs an identity but none has been resolved."""


class StoreUnavailable(AccessError):
    """No transaction stream is configured for purchases."""


class PurchaseCancelled(RuntimeError):
    """Raised by transaction streams when the user backs out of the store sheet."""
