"""Registered and guest identities."""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

from creditkeeper.domain.model.enums import IdentityKind


@dataclass(frozen=True, slots=True)
class RegisteredIdentity:
    KIND: ClassVar[IdentityKind] = IdentityKind.REGISTERED

    user_id: str

    @property
    def subject_id(self) -> str:
        return self.user_id

    @property
    def is_guest(self) -> bool:
        return False

    @property
    def cache_key(self) -> str:
        return f"{self.KIND}:{self.user_id}"


@dataclass(frozen=True, slots=True)
class GuestIdentity:
    KIND: ClassVar[IdentityKind] = IdentityKind.GUEST

    guest_id: str

    @property
    def subject_id(self) -> str:
        return self.guest_id

    @property
    def is_guest(self) -> bool:
        return True

    @property
    def cache_key(self) -> str:
        return f"{self.KIND}:{self.guest_id}"


type Identity = RegisteredIdentity | GuestIdentity


def identity_from_parts(kind: str, subject_id: str) -> Identity:
    match IdentityKind(kind):
        case IdentityKind.REGISTERED:
            return RegisteredIdentity(user_id=subject_id)
        case IdentityKind.GUEST:
            return GuestIdentity(guest_id=subject_id)
