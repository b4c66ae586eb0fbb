"""Application facade and wiring for the UI layer.

Every public coroutine on :class:`AccessService` returns ``Ok(value)`` or
``Failure(error, message)``; nothing raised below this boundary reaches the
caller.
"""

from __future__ import annotations

import secrets
from contextlib import AsyncExitStack
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from logging import getLogger
from typing import TYPE_CHECKING

from creditkeeper.adapters.profile_api import HttpProfileClient
from creditkeeper.adapters.sqlalchemy import SqlAlchemyLocalCache, SqlAlchemyProfileStore
from creditkeeper.adapters.sqlalchemy.migrations import head_revision, upgrade_head
from creditkeeper.adapters.sqlalchemy.unit_of_work import is_started, shutdown, startup
from creditkeeper.config import (
    get_access_config,
    get_database_config,
    get_local_cache_config,
    get_profile_api_config,
    optional_env,
)
from creditkeeper.config.profile_api import PROFILE_API_TOKEN_ENV, PROFILE_API_URL_ENV
from creditkeeper.domain.catalog import default_catalog
from creditkeeper.domain.errors import (
    AccessError,
    CacheUnavailable,
    InvalidSession,
    NoActiveIdentity,
    PurchaseRejected,
    ResolutionTimeout,
    SignInTimeout,
    StoreUnavailable,
    TransientNetworkError,
)
from creditkeeper.domain.guest import GuestIdentityManager
from creditkeeper.domain.ledger import EntitlementLedger
from creditkeeper.domain.local_state import LocalState
from creditkeeper.domain.model import MigrationStatus, OrphanScanReport, RegisteredIdentity
from creditkeeper.domain.reconciler import PurchaseReconciler
from creditkeeper.domain.session_resolver import SessionResolver
from creditkeeper.domain.session_wait import await_session

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from creditkeeper.config import AccessConfig
    from creditkeeper.domain.catalog import ProductCatalog
    from creditkeeper.domain.ledger import LedgerGrant
    from creditkeeper.domain.model import (
        AuthDecision,
        EntitlementRecord,
        GuestIdentity,
        Identity,
        MigrationResult,
        ProfileSnapshot,
        PurchaseOutcome,
    )
    from creditkeeper.domain.ports import LocalCache, RemoteProfileClient, TransactionStream

log = getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Ok[T]:
    value: T


@dataclass(frozen=True, slots=True)
class Failure:
    error: AccessError
    message: str


type Outcome[T] = Ok[T] | Failure


_DEFAULT_MESSAGES: dict[type[AccessError], str] = {
    ResolutionTimeout: "We could not confirm your account right now. Please try again.",
    InvalidSession: "Your session has ended. Please sign in again.",
    TransientNetworkError: "The service is unreachable right now. Please try again.",
    SignInTimeout: "Sign-in did not complete in time. Please try again.",
    NoActiveIdentity: "Sign in or continue as a guest first.",
    StoreUnavailable: "Purchases are not available right now.",
    CacheUnavailable: "Local storage is unavailable.",
}


def failure_message(error: AccessError) -> str:
    if error.user_facing:
        return str(error)
    for error_type in type(error).__mro__:
        message = _DEFAULT_MESSAGES.get(error_type)
        if message is not None:
            return message
    return "Something went wrong. Please try again."


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AccessService:
    """Single entry point for the UI: holds the active identity and wraps every result."""

    def __init__(
        self,
        *,
        profiles: RemoteProfileClient,
        state: LocalState,
        resolver: SessionResolver,
        ledger: EntitlementLedger,
        guests: GuestIdentityManager,
        reconciler: PurchaseReconciler | None = None,
        config: AccessConfig | None = None,
        catalog: ProductCatalog | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.profiles = profiles
        self.state = state
        self.resolver = resolver
        self.ledger = ledger
        self.guests = guests
        self.reconciler = reconciler
        self.config = config or get_access_config()
        self.catalog = catalog or default_catalog()
        self.clock = clock
        self.exit_stack = AsyncExitStack()
        self._identity: Identity | None = None

    @property
    def identity(self) -> Identity | None:
        return self._identity

    # Session -------------------------------------------------------------------

    async def resolve(self) -> Outcome[AuthDecision]:
        async def run() -> AuthDecision:
            decision = await self.resolver.resolve()
            self._identity = decision.identity
            return decision

        return await self._guard(run(), action="resolve session")

    async def complete_sign_in(self) -> Outcome[AuthDecision]:
        """Wait for the session from an external sign-in, adopt guest data, re-resolve."""

        async def run() -> AuthDecision:
            session = await await_session(self.profiles, self.config.sign_in)
            if self.guests.current_guest() is not None:
                await self.guests.migrate(session.user_id)
            decision = await self.resolver.resolve()
            self._identity = decision.identity
            return decision

        return await self._guard(run(), action="complete sign-in")

    async def complete_onboarding(self) -> Outcome[None]:
        async def run() -> None:
            await self.resolver.complete_onboarding(self._require_identity())

        return await self._guard(run(), action="complete onboarding")

    async def sign_out(self) -> Outcome[None]:
        async def run() -> None:
            await self.resolver.sign_out()
            self._identity = self.guests.current_guest()

        return await self._guard(run(), action="sign out")

    async def delete_account(self) -> Outcome[None]:
        async def run() -> None:
            await self.resolver.delete_account(self._identity)
            self._identity = None

        return await self._guard(run(), action="delete account")

    # Guests ------------------------------------------------------------------

    async def create_guest(self) -> Outcome[GuestIdentity]:
        async def run() -> GuestIdentity:
            self.guests.create_guest()
            guest = self.guests.current_guest()
            if guest is None:
                raise CacheUnavailable("Guest identity was not persisted")
            if self._identity is None or self._identity.is_guest:
                self._identity = guest
            return guest

        return await self._guard(run(), action="create guest")

    async def migrate(self, user_id: str) -> Outcome[MigrationResult]:
        async def run() -> MigrationResult:
            result = await self.guests.migrate(user_id)
            if result.status is not MigrationStatus.NO_GUEST and (
                self._identity is None or self._identity.is_guest
            ):
                self._identity = RegisteredIdentity(user_id=user_id)
            return result

        return await self._guard(run(), action="migrate guest")

    # Credits -----------------------------------------------------------------

    async def get_balance(self) -> Outcome[EntitlementRecord]:
        async def run() -> EntitlementRecord:
            identity = self._require_identity()
            try:
                return await self.ledger.get_balance(identity)
            except TransientNetworkError:
                cached = self.ledger.cached_balance(identity)
                if cached is None:
                    raise
                log.info("Showing cached balance for %s", identity.cache_key)
                return cached

        return await self._guard(run(), action="read balance")

    async def spend(self, amount: int) -> Outcome[EntitlementRecord]:
        async def run() -> EntitlementRecord:
            return await self.ledger.spend(self._require_identity(), amount)

        return await self._guard(run(), action="spend credits")

    async def grant(
        self,
        user_id: str,
        product_id: str,
        transaction_id: str,
    ) -> Outcome[LedgerGrant]:
        """Grant a product to an account by transaction id; repeating it is a no-op."""

        async def run() -> LedgerGrant:
            product = self.catalog.get(product_id)
            if product is None:
                raise PurchaseRejected(f"Unknown product {product_id}", product_id=product_id)
            request = self.catalog.grant_for(
                product,
                transaction_id=transaction_id,
                purchased_at=self.clock(),
            )
            return await self.ledger.grant(RegisteredIdentity(user_id=user_id), request)

        return await self._guard(run(), action="grant product")

    # Purchases ---------------------------------------------------------------

    async def start(self) -> Outcome[OrphanScanReport]:
        """Recover purchases left unfinished by a previous run."""

        async def run() -> OrphanScanReport:
            if self.reconciler is None:
                return OrphanScanReport()
            return await self.reconciler.start()

        return await self._guard(run(), action="recover outstanding purchases")

    async def purchase(self, product_id: str) -> Outcome[PurchaseOutcome]:
        async def run() -> PurchaseOutcome:
            return await self._require_reconciler().purchase(product_id)

        return await self._guard(run(), action=f"purchase {product_id}")

    async def restore_purchases(self) -> Outcome[OrphanScanReport]:
        async def run() -> OrphanScanReport:
            return await self._require_reconciler().restore_purchases()

        return await self._guard(run(), action="restore purchases")

    async def aclose(self) -> None:
        await self.resolver.aclose()
        await self.exit_stack.aclose()

    # Internals ---------------------------------------------------------------

    def _require_identity(self) -> Identity:
        if self._identity is None:
            raise NoActiveIdentity("No active identity; resolve the session first")
        return self._identity

    def _require_reconciler(self) -> PurchaseReconciler:
        if self.reconciler is None:
            raise StoreUnavailable("No transaction stream configured")
        return self.reconciler

    async def _guard[T](self, operation: Awaitable[T], *, action: str) -> Outcome[T]:
        try:
            return Ok(await operation)
        except AccessError as exc:
            log.info("Could not %s: %s", action, exc)
            return Failure(error=exc, message=failure_message(exc))
        except Exception as exc:
            log.exception("Unexpected failure while trying to %s", action)
            error = AccessError(f"Unexpected failure while trying to {action}")
            error.__cause__ = exc
            return Failure(error=error, message=failure_message(error))


def build_access_service(
    *,
    profiles: RemoteProfileClient | None = None,
    cache: LocalCache | None = None,
    stream: TransactionStream | None = None,
    config: AccessConfig | None = None,
    catalog: ProductCatalog | None = None,
) -> AccessService:
    """Wire the facade from configuration.

    The HTTP profile client is used when ``PROFILE_API_URL`` is set; otherwise
    the SQLAlchemy profile store serves as the canonical store. Adapters built
    here are closed by :meth:`AccessService.aclose`.
    """

    access_config = config or get_access_config()
    product_catalog = catalog or default_catalog()
    exit_stack = AsyncExitStack()

    if cache is None:
        local_cache = SqlAlchemyLocalCache.open(get_local_cache_config().uri)
        exit_stack.callback(local_cache.close)
        cache = local_cache

    if profiles is None:
        if optional_env(PROFILE_API_URL_ENV) is not None:
            client = HttpProfileClient(config=get_profile_api_config())
            exit_stack.push_async_callback(client.aclose)
            profiles = client
        else:
            if not is_started():
                startup()
                exit_stack.callback(shutdown)
            profiles = SqlAlchemyProfileStore(access_token=optional_env(PROFILE_API_TOKEN_ENV))
        log.debug("Using %s as the profile store", type(profiles).__name__)

    state = LocalState(cache)
    ledger = EntitlementLedger(
        profiles=profiles,
        state=state,
        config=access_config.ledger,
        catalog=product_catalog,
    )
    guests = GuestIdentityManager(state=state, ledger=ledger)
    resolver = SessionResolver(
        profiles=profiles,
        state=state,
        guests=guests,
        config=access_config.resolver,
    )
    service = AccessService(
        profiles=profiles,
        state=state,
        resolver=resolver,
        ledger=ledger,
        guests=guests,
        config=access_config,
        catalog=product_catalog,
    )
    if stream is not None:
        service.reconciler = PurchaseReconciler(
            stream=stream,
            ledger=ledger,
            state=state,
            identity_provider=lambda: service.identity,
            catalog=product_catalog,
            config=access_config.reconciler,
        )
    service.exit_stack.push_async_callback(exit_stack.aclose)
    return service


def create_profile(
    user_id: str,
    *,
    onboarding_completed: bool = False,
    store: SqlAlchemyProfileStore | None = None,
) -> ProfileSnapshot:
    """Create a profile in the local canonical store (no-op if it exists)."""

    if store is None:
        if not is_started():
            startup()
        store = SqlAlchemyProfileStore()
    store.create_profile(user_id, onboarding_completed=onboarding_completed)
    snapshot = store.profile_sync(user_id)
    if snapshot is None:
        raise RuntimeError(f"Profile {user_id} was not created")
    log.info("Profile %s holds %s credits", user_id, snapshot.credits_current)
    return snapshot


def issue_session(
    user_id: str,
    *,
    token: str | None = None,
    ttl: timedelta | None = None,
    store: SqlAlchemyProfileStore | None = None,
) -> str:
    """Issue a session token for ``user_id`` in the local canonical store."""

    if store is None:
        if not is_started():
            startup()
        store = SqlAlchemyProfileStore()
    issued = token or secrets.token_urlsafe(32)
    expires_at = _utcnow() + ttl if ttl is not None else None
    store.issue_session(user_id, issued, expires_at=expires_at)
    return issued


def upgrade_database(database_uri: str | None = None) -> str | None:
    """Upgrade the profile store schema; returns the head revision now in place."""

    upgrade_head(database_uri=database_uri or get_database_config().uri)
    return head_revision()
