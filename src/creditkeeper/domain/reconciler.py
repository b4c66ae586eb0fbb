"""Turn store transactions into credit grants exactly once."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING, Final

from creditkeeper.config.access import ReconcilerConfig
from creditkeeper.domain.catalog import ProductCatalog, default_catalog
from creditkeeper.domain.errors import (
    AccessError,
    CacheUnavailable,
    InvalidSession,
    OrphanRecoveryFailure,
    PurchaseCancelled,
    PurchaseRejected,
    TransientNetworkError,
)
from creditkeeper.domain.model import (
    GrantStatus,
    JournalEntry,
    OrphanScanReport,
    PurchaseOutcome,
    PurchaseStatus,
    ReconcileState,
    TransactionState,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from creditkeeper.domain.ledger import EntitlementLedger
    from creditkeeper.domain.local_state import LocalState
    from creditkeeper.domain.model import EntitlementRecord, Identity, Transaction
    from creditkeeper.domain.ports import TransactionStream

log = getLogger(__name__)

TIMEOUT_MESSAGE: Final[str] = (
    "The store did not confirm your purchase in time. If you were charged, "
    "your credits will be added automatically the next time the app starts."
)
PENDING_MESSAGE: Final[str] = "Your purchase is awaiting approval from the store."


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    state: ReconcileState
    grant_status: GrantStatus | None = None
    record: EntitlementRecord | None = None
    error: AccessError | None = None


class PurchaseReconciler:
    """Drive each transaction through ``observed -> verifying -> granted -> acknowledged``.

    Grants go through ``EntitlementLedger.grant`` keyed by the store transaction
    id; acknowledgement happens only after the grant succeeded, so a crash in
    between leaves the transaction outstanding for the next orphan scan.
    """

    def __init__(
        self,
        *,
        stream: TransactionStream,
        ledger: EntitlementLedger,
        state: LocalState,
        identity_provider: Callable[[], Identity | None],
        catalog: ProductCatalog | None = None,
        config: ReconcilerConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.stream = stream
        self.ledger = ledger
        self.state = state
        self.identity_provider = identity_provider
        self.catalog = catalog or default_catalog()
        self.config = config or ReconcilerConfig()
        self.clock = clock
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._lock_users: defaultdict[str, int] = defaultdict(int)
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> OrphanScanReport:
        """Recover orphans from a previous process; call before consuming events."""

        report = await self.scan_outstanding()
        self._started = True
        return report

    async def run(self) -> None:
        """Run the startup scan, then reconcile store events until the stream ends."""

        if not self._started:
            await self.start()
        semaphore = asyncio.Semaphore(self.config.max_concurrent_callbacks)

        async def dispatch(transaction: Transaction) -> None:
            try:
                await self.handle_event(transaction)
            except AccessError as exc:
                log.warning("Transaction %s not reconciled: %s", transaction.transaction_id, exc)
            finally:
                semaphore.release()

        async with asyncio.TaskGroup() as group:
            async for transaction in self.stream.events():
                await semaphore.acquire()
                group.create_task(dispatch(transaction))

    async def restore_purchases(self) -> OrphanScanReport:
        return await self.scan_outstanding()

    async def scan_outstanding(self) -> OrphanScanReport:
        report = OrphanScanReport()
        try:
            outstanding = await self._store_call(
                self.stream.list_outstanding(),
                action="list outstanding transactions",
            )
        except TransientNetworkError as exc:
            log.warning("Orphan scan skipped, will retry next start: %s", exc)
            report.scan_failed = True
            return report

        report.outstanding = len(outstanding)
        for transaction in outstanding:
            try:
                result = await self._recover(transaction)
            except OrphanRecoveryFailure as exc:
                log.warning("%s", exc)
                report.failed += 1
                continue
            except PurchaseRejected as exc:
                log.warning("Outstanding transaction rejected: %s", exc)
                report.rejected += 1
                continue
            if result.grant_status is GrantStatus.APPLIED:
                report.granted += 1
            elif result.grant_status is GrantStatus.DUPLICATE:
                report.duplicates += 1

        log.info(
            "Orphan scan finished: outstanding=%s, granted=%s, duplicates=%s, rejected=%s, "
            "failed=%s",
            report.outstanding,
            report.granted,
            report.duplicates,
            report.rejected,
            report.failed,
        )
        return report

    async def _recover(self, transaction: Transaction) -> ReconcileResult:
        result = await self.handle_event(transaction)
        if result.state is ReconcileState.FAILED:
            raise OrphanRecoveryFailure(
                f"Could not recover transaction {transaction.transaction_id}: {result.error}",
                transaction_id=transaction.transaction_id,
            )
        return result

    async def handle_event(self, transaction: Transaction) -> ReconcileResult:
        transaction_id = transaction.transaction_id
        lock = self._locks[transaction_id]
        self._lock_users[transaction_id] += 1
        try:
            async with lock:
                return await self._handle(transaction)
        finally:
            self._lock_users[transaction_id] -= 1
            if not self._lock_users[transaction_id]:
                del self._lock_users[transaction_id]
                del self._locks[transaction_id]

    async def _handle(self, transaction: Transaction) -> ReconcileResult:
        match transaction.state:
            case TransactionState.PENDING:
                entry = self._journal_entry(transaction.transaction_id)
                # a late pending event never reopens a settled transaction
                if entry is None or not entry.state.is_terminal:
                    self._journal(transaction, ReconcileState.OBSERVED)
                return ReconcileResult(state=ReconcileState.OBSERVED)
            case TransactionState.FAILED:
                self._journal(transaction, ReconcileState.DISCARDED)
                raise PurchaseRejected(
                    "The store reported the payment as failed",
                    product_id=transaction.product_id,
                )
            case TransactionState.REVOKED:
                self._journal(transaction, ReconcileState.REJECTED)
                await self._acknowledge(transaction)
                raise PurchaseRejected(
                    f"Transaction {transaction.transaction_id} was refunded or revoked",
                    product_id=transaction.product_id,
                )
            case (
                TransactionState.COMPLETED
                | TransactionState.GRANTED
                | TransactionState.ACKNOWLEDGED
            ):
                return await self._grant(transaction)

    async def _grant(self, transaction: Transaction) -> ReconcileResult:
        transaction_id = transaction.transaction_id
        entry = self._journal_entry(transaction_id)
        if entry is not None and entry.state is ReconcileState.ACKNOWLEDGED:
            if transaction.state is not TransactionState.ACKNOWLEDGED:
                await self._acknowledge(transaction)
            log.debug("Transaction %s already reconciled", transaction_id)
            return ReconcileResult(state=ReconcileState.ACKNOWLEDGED)

        attempts = entry.attempts + 1 if entry is not None else 1
        self._journal(transaction, ReconcileState.VERIFYING, attempts=attempts)

        product = self.catalog.get(transaction.product_id)
        if product is None:
            self._journal(transaction, ReconcileState.REJECTED, attempts=attempts)
            # acknowledge so the store stops redelivering it
            await self._acknowledge(transaction)
            raise PurchaseRejected(
                f"Unknown product {transaction.product_id}",
                product_id=transaction.product_id,
            )

        identity = self.identity_provider()
        if identity is None:
            log.warning("No active identity; transaction %s left for a later pass", transaction_id)
            self._journal(transaction, ReconcileState.FAILED, attempts=attempts)
            return ReconcileResult(state=ReconcileState.FAILED)

        request = self.catalog.grant_for(
            product,
            transaction_id=transaction_id,
            purchased_at=self.clock(),
        )
        try:
            grant = await self.ledger.grant(identity, request)
        except (TransientNetworkError, InvalidSession) as exc:
            log.warning("Grant for %s failed (attempt %s): %s", transaction_id, attempts, exc)
            self._journal(transaction, ReconcileState.FAILED, attempts=attempts, identity=identity)
            return ReconcileResult(state=ReconcileState.FAILED, error=exc)

        self._journal(transaction, ReconcileState.GRANTED, attempts=attempts, identity=identity)
        if transaction.state is not TransactionState.ACKNOWLEDGED:
            acknowledged = await self._acknowledge(transaction)
            if not acknowledged:
                return ReconcileResult(
                    state=ReconcileState.GRANTED,
                    grant_status=grant.status,
                    record=grant.record,
                )
        self._journal(
            transaction,
            ReconcileState.ACKNOWLEDGED,
            attempts=attempts,
            identity=identity,
        )
        return ReconcileResult(
            state=ReconcileState.ACKNOWLEDGED,
            grant_status=grant.status,
            record=grant.record,
        )

    async def purchase(self, product_id: str) -> PurchaseOutcome:
        if product_id not in self.catalog:
            raise PurchaseRejected(f"Unknown product {product_id}", product_id=product_id)
        try:
            async with asyncio.timeout(self.config.purchase_timeout_seconds):
                transaction = await self.stream.request_purchase(product_id)
        except PurchaseCancelled:
            log.info("Purchase of %s cancelled by the user", product_id)
            return PurchaseOutcome(status=PurchaseStatus.CANCELLED, product_id=product_id)
        except (TimeoutError, TransientNetworkError) as exc:
            log.warning("Purchase of %s did not complete: %s", product_id, exc)
            return PurchaseOutcome(
                status=PurchaseStatus.TIMED_OUT,
                product_id=product_id,
                message=TIMEOUT_MESSAGE,
            )

        result = await self.handle_event(transaction)
        match result.state:
            case ReconcileState.GRANTED | ReconcileState.ACKNOWLEDGED:
                return PurchaseOutcome(
                    status=PurchaseStatus.GRANTED,
                    product_id=product_id,
                    transaction_id=transaction.transaction_id,
                    balance=result.record,
                )
            case ReconcileState.OBSERVED:
                return PurchaseOutcome(
                    status=PurchaseStatus.PENDING,
                    product_id=product_id,
                    transaction_id=transaction.transaction_id,
                    message=PENDING_MESSAGE,
                )
            case _:
                return PurchaseOutcome(
                    status=PurchaseStatus.TIMED_OUT,
                    product_id=product_id,
                    transaction_id=transaction.transaction_id,
                    message=TIMEOUT_MESSAGE,
                )

    async def _acknowledge(self, transaction: Transaction) -> bool:
        try:
            await self._store_call(
                self.stream.acknowledge(transaction.transaction_id),
                action=f"acknowledge {transaction.transaction_id}",
            )
        except TransientNetworkError as exc:
            log.warning("%s; retrying on the next scan", exc)
            return False
        return True

    async def _store_call[T](self, awaitable: Awaitable[T], *, action: str) -> T:
        try:
            async with asyncio.timeout(self.config.store_timeout_seconds):
                return await awaitable
        except TimeoutError as exc:
            raise TransientNetworkError(f"Store timed out trying to {action}") from exc

    def _journal_entry(self, transaction_id: str) -> JournalEntry | None:
        try:
            return self.state.journal_entry(transaction_id)
        except CacheUnavailable:
            return None

    def _journal(
        self,
        transaction: Transaction,
        state: ReconcileState,
        *,
        attempts: int = 0,
        identity: Identity | None = None,
    ) -> None:
        entry = JournalEntry(
            transaction_id=transaction.transaction_id,
            product_id=transaction.product_id,
            state=state,
            updated_at=self.clock(),
            attempts=attempts,
            identity_key=identity.cache_key if identity is not None else None,
        )
        try:
            self.state.save_journal_entry(entry, limit=self.config.journal_limit)
        except CacheUnavailable:
            log.warning("Could not journal %s as %s", transaction.transaction_id, state)
        log.debug("Transaction %s -> %s", transaction.transaction_id, state)
