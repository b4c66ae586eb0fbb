"""Port for the app store's purchase transaction stream."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from creditkeeper.domain.model import Transaction


@runtime_checkable
class TransactionStream(Protocol):
    def events(self) -> AsyncIterator[Transaction]:
        """Yield transaction updates as the store reports them."""
        ...

    async def list_outstanding(self) -> Sequence[Transaction]:
        """Return transactions the store has not yet seen acknowledged."""
        ...

    async def acknowledge(self, transaction_id: str) -> None: ...

    async def request_purchase(self, product_id: str) -> Transaction:
        """Start a purchase; raises ``PurchaseCancelled`` if the user backs out."""
        ...
