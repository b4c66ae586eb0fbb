"""Port for the device-local key/value cache."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence


@runtime_checkable
class LocalCache(Protocol):
    """Plain key/value store without transactions.

    Implementations raise ``CacheUnavailable`` when the backing store fails.
    """

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def remove_all(self, keys: Sequence[str]) -> None: ...
