"""Merge remote, cached and guest signals into one authorization decision."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from creditkeeper.config.access import ResolverConfig
from creditkeeper.domain.errors import (
    AccountDeletionFailed,
    CacheUnavailable,
    InvalidSession,
    ProfileError,
    ProfileErrorKind,
    ResolutionTimeout,
    TransientNetworkError,
)
from creditkeeper.domain.model import (
    AuthDecision,
    DecisionSource,
    ProfilePatch,
    RegisteredIdentity,
    SessionRecord,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from creditkeeper.domain.guest import GuestIdentityManager
    from creditkeeper.domain.local_state import LocalState
    from creditkeeper.domain.model import Identity
    from creditkeeper.domain.ports import RemoteProfileClient

log = getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SessionResolver:
    """Resolve who the user is, degrading through remote, cache and guest tiers.

    Precedence, highest first:

    1. cached onboarding completion authorizes immediately when a cached or
       guest identity exists; the remote check runs in the background and
       never delays the decision;
    2. a remote session backed by a profile row;
    3. on a transient remote failure, a cached authenticated session younger
       than the configured maximum age;
    4. a local guest identity;
    5. otherwise unauthenticated.

    ``resolve`` raises only ``ResolutionTimeout``.
    """

    def __init__(
        self,
        *,
        profiles: RemoteProfileClient,
        state: LocalState,
        guests: GuestIdentityManager,
        config: ResolverConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.profiles = profiles
        self.state = state
        self.guests = guests
        self.config = config or ResolverConfig()
        self.clock = clock
        self._background: set[asyncio.Task[None]] = set()

    async def resolve(self) -> AuthDecision:
        try:
            async with asyncio.timeout(self.config.resolution_deadline_seconds):
                return await self._resolve()
        except TimeoutError as exc:
            raise ResolutionTimeout("Session resolution exceeded its deadline") from exc

    async def _resolve(self) -> AuthDecision:
        cache_available = True
        cached: SessionRecord | None = None
        onboarding_completed = False
        try:
            onboarding_completed = self.state.onboarding_completed()
            cached = self.state.load_session()
        except CacheUnavailable:
            log.warning("Local cache unavailable during session resolution")
            cache_available = False

        identity = self._short_circuit_identity(cached) if onboarding_completed else None
        if identity is not None:
            self._schedule_refresh()
            return AuthDecision(
                is_authenticated=True,
                identity=identity,
                is_guest=identity.is_guest,
                source=DecisionSource.CACHE,
            )

        remote_available = True
        try:
            decision = await self._verify_remote(onboarding_completed=onboarding_completed)
        except TimeoutError:
            log.warning(
                "Remote session check timed out after %ss",
                self.config.remote_timeout_seconds,
            )
            remote_available = False
        except ProfileError as exc:
            if exc.invalidates_session:
                log.info("Remote rejected the session (%s); clearing cached session", exc.kind)
                self._clear_session()
                cached = None
            else:
                log.warning("Remote session check failed (%s): %s", exc.kind, exc)
                remote_available = False
        else:
            if decision is not None:
                return decision
            cached = None

        trusted = None if remote_available else self._trusted_identity(cached)
        if trusted is not None:
            log.info("Remote unavailable; using cached session for %s", trusted.cache_key)
            return AuthDecision(
                is_authenticated=True,
                identity=trusted,
                is_guest=trusted.is_guest,
                source=DecisionSource.CACHE,
            )

        guest_available = True
        try:
            guest = self.guests.current_guest()
        except CacheUnavailable:
            guest_available = False
            guest = None
        if guest is not None:
            return AuthDecision(
                is_authenticated=True,
                identity=guest,
                is_guest=True,
                source=DecisionSource.FALLBACK,
            )

        if not (remote_available or cache_available or guest_available):
            raise ResolutionTimeout("Remote, cache and guest signals are all unavailable")
        return AuthDecision.unauthenticated()

    async def _verify_remote(self, *, onboarding_completed: bool) -> AuthDecision | None:
        """Check the remote session; ``None`` means the remote says unauthenticated."""

        async with asyncio.timeout(self.config.remote_timeout_seconds):
            session = await self.profiles.get_session()
            if session is None:
                log.info("No remote session; clearing cached session")
                self._clear_session()
                return None
            profile = await self.profiles.get_profile(session.user_id)

        if profile is None:
            log.warning("Session for %s has no profile record; clearing", session.user_id)
            self._clear_session()
            return None

        if profile.onboarding_completed is not None:
            onboarding_completed = profile.onboarding_completed
        identity = RegisteredIdentity(user_id=session.user_id)
        record = SessionRecord(
            identity=identity,
            authenticated=True,
            onboarding_completed=onboarding_completed,
            last_verified_at=self.clock(),
        )
        try:
            self.state.save_session(record)
        except CacheUnavailable:
            log.warning("Could not persist verified session for %s", session.user_id)
        return AuthDecision(
            is_authenticated=True,
            identity=identity,
            is_guest=False,
            source=DecisionSource.REMOTE,
        )

    def _trusted_identity(self, record: SessionRecord | None) -> Identity | None:
        """Return the cached identity if it is authenticated and recent enough."""

        if record is None or not record.authenticated or record.last_verified_at is None:
            return None
        limit = self.config.cache_age_limit(onboarding_completed=record.onboarding_completed)
        if self.clock() - record.last_verified_at > limit:
            log.info("Cached session is older than %s; not trusting it", limit)
            return None
        return record.identity

    def _short_circuit_identity(self, cached: SessionRecord | None) -> Identity | None:
        if cached is not None and cached.authenticated and cached.identity is not None:
            return cached.identity
        try:
            return self.guests.current_guest()
        except CacheUnavailable:
            return None

    def _clear_session(self) -> None:
        try:
            self.state.clear_session()
        except CacheUnavailable:
            log.warning("Could not clear cached session")

    # Background refresh ------------------------------------------------------

    def _schedule_refresh(self) -> None:
        if any(not task.done() for task in self._background):
            return
        task = asyncio.create_task(self._refresh(), name="session-refresh")
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _refresh(self) -> None:
        try:
            await self._verify_remote(onboarding_completed=True)
        except TimeoutError:
            log.info("Background session refresh timed out")
        except ProfileError as exc:
            if exc.invalidates_session:
                log.info("Background refresh: session rejected (%s); clearing", exc.kind)
                self._clear_session()
            else:
                log.info("Background session refresh failed (%s)", exc.kind)
        except CacheUnavailable:
            log.warning("Background session refresh could not reach the local cache")
        except Exception:
            log.exception("Background session refresh failed unexpectedly")

    async def drain(self) -> None:
        """Wait for in-flight background refreshes."""

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def aclose(self) -> None:
        for task in self._background:
            task.cancel()
        await self.drain()

    # Onboarding --------------------------------------------------------------

    async def complete_onboarding(self, identity: Identity) -> None:
        """Mark onboarding done; the local flag follows a successful remote write.

        Guests have no remote profile to update, so only the local flag is set.
        """

        if not identity.is_guest:
            try:
                async with asyncio.timeout(self.config.remote_timeout_seconds):
                    await self.profiles.update_profile(
                        identity.subject_id,
                        ProfilePatch(onboarding_completed=True),
                    )
            except TimeoutError as exc:
                raise TransientNetworkError("Timed out recording onboarding completion") from exc
            except ProfileError as exc:
                if exc.invalidates_session:
                    raise InvalidSession(f"Session rejected recording onboarding: {exc}") from exc
                raise TransientNetworkError(f"Could not record onboarding: {exc}") from exc
        self.state.set_onboarding_completed(True)
        log.info("Onboarding completed for %s", identity.cache_key)

    # Sign-out ----------------------------------------------------------------

    async def sign_out(self) -> None:
        """End the session; guest-scoped data is left untouched."""

        try:
            async with asyncio.timeout(self.config.remote_timeout_seconds):
                await self.profiles.sign_out()
        except (TimeoutError, ProfileError) as exc:
            log.warning("Remote sign-out failed, clearing local session anyway: %s", exc)
        self.state.clear_session()
        self.state.clear_onboarding()

    async def delete_account(self, identity: Identity | None) -> None:
        """Delete the remote profile, then clear every local trace of the user."""

        if identity is not None:
            try:
                async with asyncio.timeout(self.config.remote_timeout_seconds):
                    await self.profiles.delete_profile(identity.subject_id)
            except TimeoutError as exc:
                raise AccountDeletionFailed("Account deletion timed out") from exc
            except ProfileError as exc:
                if exc.kind is not ProfileErrorKind.NOT_FOUND:
                    raise AccountDeletionFailed(f"Account deletion failed: {exc}") from exc
            self.state.clear_mirror(identity)

        await self.sign_out()
        self.state.clear_guest()
        log.info("Deleted account data for %s", identity.cache_key if identity else "<none>")
