"""Port for the remote identity/profile service that owns canonical balances."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from creditkeeper.domain.model import (
        GrantOutcome,
        GrantRequest,
        ProfilePatch,
        ProfileSnapshot,
        RemoteSession,
    )


@runtime_checkable
class RemoteProfileClient(Protocol):
    """Remote profile operations.

    Every method raises ``ProfileError`` with a ``ProfileErrorKind`` on failure.
    ``apply_grant`` must be atomic and idempotent on ``request.transaction_id``
    across all profiles; ``spend`` must debit only if the balance covers it.
    """

    async def get_session(self) -> RemoteSession | None: ...

    async def get_profile(self, profile_id: str) -> ProfileSnapshot | None: ...

    async def update_profile(self, profile_id: str, patch: ProfilePatch) -> None: ...

    async def apply_grant(
        self,
        profile_id: str,
        request: GrantRequest,
        *,
        create_missing: bool = False,
    ) -> GrantOutcome: ...

    async def spend(self, profile_id: str, amount: int) -> ProfileSnapshot: ...

    async def sign_out(self) -> None: ...

    async def delete_profile(self, profile_id: str) -> None: ...
