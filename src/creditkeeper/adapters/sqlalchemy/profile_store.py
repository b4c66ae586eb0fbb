"""Canonical profile store on SQLAlchemy, exposed through the remote profile port.

Grants are recorded in ``profile_grant`` whose primary key is the transaction
id, and the balance update rides on the profile's ``version`` column. Both
happen in one transaction, so a repeated transaction id fails the insert and
a concurrent balance change fails the versioned update; the former is
reported as a duplicate, the latter retried.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING, Final

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from creditkeeper.adapters.sqlalchemy.unit_of_work import SqlAlchemyUnitOfWork
from creditkeeper.domain.errors import InsufficientCredits, ProfileError, ProfileErrorKind
from creditkeeper.domain.model import (
    GrantEntry,
    GrantOutcome,
    GrantStatus,
    Profile,
    ProfileSnapshot,
    RemoteSession,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from creditkeeper.domain.model import GrantRequest, ProfilePatch
    from creditkeeper.domain.ports import ProfileUnitOfWork

log = getLogger(__name__)

MAX_WRITE_ATTEMPTS: Final[int] = 8
_RETRY_DELAY_SECONDS: Final[float] = 0.02


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _backoff(attempt: int) -> None:
    time.sleep(_RETRY_DELAY_SECONDS * attempt)


@dataclass(slots=True)
class SqlAlchemyProfileStore:
    unit_of_work_factory: Callable[[], ProfileUnitOfWork] = SqlAlchemyUnitOfWork
    access_token: str | None = None
    clock: Callable[[], datetime] = field(default=_utcnow)

    # Port implementation ---------------------------------------------------

    async def get_session(self) -> RemoteSession | None:
        return await asyncio.to_thread(self.session_sync)

    async def get_profile(self, profile_id: str) -> ProfileSnapshot | None:
        return await asyncio.to_thread(self.profile_sync, profile_id)

    async def update_profile(self, profile_id: str, patch: ProfilePatch) -> None:
        await asyncio.to_thread(self.update_profile_sync, profile_id, patch)

    async def apply_grant(
        self,
        profile_id: str,
        request: GrantRequest,
        *,
        create_missing: bool = False,
    ) -> GrantOutcome:
        return await asyncio.to_thread(
            self.apply_grant_sync,
            profile_id,
            request,
            create_missing=create_missing,
        )

    async def spend(self, profile_id: str, amount: int) -> ProfileSnapshot:
        return await asyncio.to_thread(self.spend_sync, profile_id, amount)

    async def sign_out(self) -> None:
        await asyncio.to_thread(self.sign_out_sync)

    async def delete_profile(self, profile_id: str) -> None:
        await asyncio.to_thread(self.delete_profile_sync, profile_id)

    # Synchronous operations ------------------------------------------------

    def session_sync(self) -> RemoteSession | None:
        if self.access_token is None:
            return None
        with self.unit_of_work_factory() as uow:
            token = uow.repositories.session_tokens.get(self.access_token)
        if token is None:
            raise ProfileError("Unknown session token", kind=ProfileErrorKind.INVALID_TOKEN)
        if token.is_expired(self.clock()):
            raise ProfileError("Session token expired", kind=ProfileErrorKind.EXPIRED_TOKEN)
        return RemoteSession(user_id=token.user_id, expires_at=token.expires_at)

    def profile_sync(self, profile_id: str) -> ProfileSnapshot | None:
        with self.unit_of_work_factory() as uow:
            profile = uow.repositories.profiles.get(profile_id)
            return profile.snapshot() if profile is not None else None

    def update_profile_sync(self, profile_id: str, patch: ProfilePatch) -> None:
        def update(uow: ProfileUnitOfWork) -> None:
            profile = self._require_profile(uow, profile_id)
            if patch.onboarding_completed is not None:
                profile.onboarding_completed = patch.onboarding_completed
                profile.updated_at = self.clock()

        self._write(update, action=f"update profile {profile_id}")

    def apply_grant_sync(
        self,
        profile_id: str,
        request: GrantRequest,
        *,
        create_missing: bool = False,
    ) -> GrantOutcome:
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            try:
                with self.unit_of_work_factory() as uow:
                    profiles = uow.repositories.profiles
                    profile = profiles.get(profile_id)
                    if profile is None:
                        if not create_missing:
                            raise ProfileError(
                                f"No profile {profile_id}", kind=ProfileErrorKind.NOT_FOUND
                            )
                        profile = Profile(id=profile_id)
                        profiles.add(profile)
                    uow.repositories.grants.add(GrantEntry.from_request(profile_id, request))
                    profile.apply_grant(request)
                    uow.commit()
                    return GrantOutcome(snapshot=profile.snapshot(), status=GrantStatus.APPLIED)
            except IntegrityError:
                if self._grant_exists(request.transaction_id):
                    log.info("Transaction %s already granted", request.transaction_id)
                    return GrantOutcome(
                        snapshot=self._snapshot_or_empty(profile_id),
                        status=GrantStatus.DUPLICATE,
                    )
                log.debug("Concurrent creation of profile %s, retrying", profile_id)
            except StaleDataError:
                log.debug("Balance of %s changed concurrently (attempt %s)", profile_id, attempt)
            except OperationalError:
                log.warning("Database busy while granting %s (attempt %s)", profile_id, attempt)
            _backoff(attempt)
        raise ProfileError(
            f"Could not grant {request.transaction_id} after {MAX_WRITE_ATTEMPTS} attempts",
            kind=ProfileErrorKind.CONFLICT,
        )

    def spend_sync(self, profile_id: str, amount: int) -> ProfileSnapshot:
        def debit(uow: ProfileUnitOfWork) -> ProfileSnapshot:
            profile = self._require_profile(uow, profile_id)
            if not profile.debit(amount):
                raise InsufficientCredits(
                    "Insufficient credits",
                    available=profile.credits_current,
                )
            return profile.snapshot()

        return self._write(debit, action=f"spend {amount} from {profile_id}")

    def sign_out_sync(self) -> None:
        if self.access_token is None:
            return

        def revoke(uow: ProfileUnitOfWork) -> None:
            uow.repositories.session_tokens.revoke(self.access_token or "")

        self._write(revoke, action="sign out")
        self.access_token = None

    def delete_profile_sync(self, profile_id: str) -> None:
        def remove(uow: ProfileUnitOfWork) -> None:
            profile = self._require_profile(uow, profile_id)
            uow.repositories.profiles.delete(profile)
            uow.repositories.session_tokens.revoke_all(profile_id)

        self._write(remove, action=f"delete profile {profile_id}")
        log.info("Deleted profile %s", profile_id)

    # Operator helpers ------------------------------------------------------

    def create_profile(self, profile_id: str, *, onboarding_completed: bool = False) -> None:
        def create(uow: ProfileUnitOfWork) -> None:
            if uow.repositories.profiles.get(profile_id) is None:
                profile = Profile(id=profile_id, onboarding_completed=onboarding_completed)
                uow.repositories.profiles.add(profile)

        self._write(create, action=f"create profile {profile_id}")

    def issue_session(
        self,
        user_id: str,
        token: str,
        *,
        expires_at: datetime | None = None,
    ) -> None:
        def issue(uow: ProfileUnitOfWork) -> None:
            uow.repositories.session_tokens.issue(token, user_id, expires_at=expires_at)

        self._write(issue, action=f"issue session for {user_id}")
        self.access_token = token

    def grants_for(self, profile_id: str) -> list[GrantEntry]:
        """Grant history for ``profile_id``, detached from the database session."""

        with self.unit_of_work_factory() as uow:
            return [
                GrantEntry(
                    transaction_id=entry.transaction_id,
                    profile_id=entry.profile_id,
                    credit_delta=entry.credit_delta,
                    kind=entry.kind,
                    product_id=entry.product_id,
                    granted_at=entry.granted_at,
                )
                for entry in uow.repositories.grants.for_profile(profile_id)
            ]

    # Internals -------------------------------------------------------------

    def _write[T](self, operation: Callable[[ProfileUnitOfWork], T], *, action: str) -> T:
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            try:
                with self.unit_of_work_factory() as uow:
                    result = operation(uow)
                    uow.commit()
                    return result
            except StaleDataError:
                log.debug("Concurrent update during %s (attempt %s)", action, attempt)
            except OperationalError:
                log.warning("Database busy during %s (attempt %s)", action, attempt)
            _backoff(attempt)
        raise ProfileError(
            f"Could not {action} after {MAX_WRITE_ATTEMPTS} attempts",
            kind=ProfileErrorKind.CONFLICT,
        )

    @staticmethod
    def _require_profile(uow: ProfileUnitOfWork, profile_id: str) -> Profile:
        profile = uow.repositories.profiles.get(profile_id)
        if profile is None:
            raise ProfileError(f"No profile {profile_id}", kind=ProfileErrorKind.NOT_FOUND)
        return profile

    def _grant_exists(self, transaction_id: str) -> bool:
        with self.unit_of_work_factory() as uow:
            return uow.repositories.grants.get(transaction_id) is not None

    def _snapshot_or_empty(self, profile_id: str) -> ProfileSnapshot:
        return self.profile_sync(profile_id) or ProfileSnapshot(profile_id=profile_id)


if TYPE_CHECKING:
    from creditkeeper.domain.ports import RemoteProfileClient

    _store_check: RemoteProfileClient = SqlAlchemyProfileStore()
