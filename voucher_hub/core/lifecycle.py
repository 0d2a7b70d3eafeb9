"""
Transaction lifecycle engine.

Orchestrates an order end to end:
1. Assign the transaction id (also the provider ref_id)
2. Resolve the selling price
3. Call the provider adapter
4. Map the outcome onto Pending / Sukses / Gagal
5. Persist the transaction
6. Dispatch a notification without waiting for it

Reconciliation re-queries the provider with the stored ref_id and settles the
transaction through the store's conditional transition, so manual checks and
the background scheduler can run the same path concurrently and still produce
one settlement and one notification.
"""
import asyncio
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol

import structlog

from voucher_hub.core.categories import classify
from voucher_hub.core.errors import (
    OrderValidationError,
    PinRejectedError,
    ProviderNotConfiguredError,
    TransactionNotFoundError,
)
from voucher_hub.core.models import (
    OrderRequest,
    OutcomeEnvelope,
    OutcomeStatus,
    PinVerification,
    ProfitSummary,
    Provider,
    Transaction,
    TransactionFilter,
    TransactionStatus,
    split_destination,
    utcnow,
)
from voucher_hub.core.notifications import NotificationDispatcher, SettlementNotice
from voucher_hub.core.pricing import PriceResolver
from voucher_hub.core.reporting import summarize_profit
from voucher_hub.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

DEFAULT_FAILURE_REASON = "Transaction failed at provider"


class ProviderGateway(Protocol):
    async def purchase(
        self,
        ref_id: str,
        product_code: str,
        destination: str,
        server_id: Optional[str] = None,
    ) -> OutcomeEnvelope:
        ...


class PinVerifier(Protocol):
    async def verify(self, account_id: str, pin: str) -> PinVerification:
        ...


class TransactionStore(Protocol):
    async def create(self, tx: Transaction) -> Transaction:
        ...

    async def get(self, transaction_id: str) -> Optional[Transaction]:
        ...

    async def list(self, filters: Optional[TransactionFilter] = None) -> List[Transaction]:
        ...

    async def transition(self, transaction_id: str, status: TransactionStatus, **fields) -> bool:
        ...

    async def delete(self, transaction_id: str) -> bool:
        ...


class ReconcileOutcome(str, Enum):
    SETTLED = "settled"
    STILL_PENDING = "still_pending"
    ALREADY_SETTLED = "already_settled"
    LOST_RACE = "lost_race"
    PROVIDER_ERROR = "provider_error"
    NOT_CONFIGURED = "not_configured"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class ReconcileResult:
    transaction: Transaction
    outcome: ReconcileOutcome
    envelope: Optional[OutcomeEnvelope] = None
    message: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.outcome is ReconcileOutcome.SETTLED


def new_transaction_id() -> str:
    return f"VH{uuid.uuid4().hex[:20].upper()}"


class TransactionLifecycleEngine:
    """
    Owns every state change of a transaction.

    Adapters are looked up by ``Provider``; each one returns an
    ``OutcomeEnvelope`` and never leaks its wire format here.
    """

    def __init__(
        self,
        store: TransactionStore,
        adapters: Dict[Provider, ProviderGateway],
        price_resolver: PriceResolver,
        dispatcher: Optional[NotificationDispatcher] = None,
        pin_verifier: Optional[PinVerifier] = None,
        id_factory: Callable[[], str] = new_transaction_id,
    ):
        self.store = store
        self.adapters = adapters
        self.price_resolver = price_resolver
        self.dispatcher = dispatcher
        self.pin_verifier = pin_verifier
        self.id_factory = id_factory

    def _adapter_for(self, provider: Provider) -> ProviderGateway:
        adapter = self.adapters.get(provider)
        if adapter is None:
            raise ProviderNotConfiguredError(provider.display_name, ["adapter"])
        return adapter

    @staticmethod
    def _validate_order(request: OrderRequest) -> None:
        """
        Validate order input.

        Raises:
            OrderValidationError: If validation fails
        """
        if request.cost_price < 0:
            raise OrderValidationError("cost_price must be non-negative")
        if not request.product_code.strip():
            raise OrderValidationError("product_code is required")
        if not request.destination.strip():
            raise OrderValidationError("destination is required")

    def _notify(self, tx: Transaction, context: str) -> None:
        if self.dispatcher is None:
            return
        self.dispatcher.dispatch(SettlementNotice.from_transaction(tx, context=context))

    async def place_order(self, account_id: str, pin: str, request: OrderRequest) -> Transaction:
        """
        Verify the account PIN, then create the order.

        Raises:
            PinRejectedError: If the PIN does not verify; nothing is created
        """
        if self.pin_verifier is None:
            raise PinRejectedError("PIN verification is not available")

        verification = await self.pin_verifier.verify(account_id, pin)
        if not verification.valid:
            logger.warning("order_pin_rejected", account_id=account_id)
            raise PinRejectedError(verification.message or "Invalid PIN.")

        return await self.create_order(request)

    async def create_order(self, request: OrderRequest) -> Transaction:
        """
        Create an order and record its first outcome.

        The provider call happens before the insert, so a transaction is
        persisted with whatever the provider reported. An error outcome is
        recorded as Gagal with the error message as failure reason.

        Args:
            request: Order input

        Returns:
            Transaction: The persisted transaction

        Raises:
            OrderValidationError: If the request is invalid
            ProviderNotConfiguredError: If provider credentials are missing;
                no network call is made and nothing is persisted
            StoreError: If the transaction could not be persisted
        """
        self._validate_order(request)
        adapter = self._adapter_for(request.provider)

        transaction_id = self.id_factory()
        log = logger.bind(transaction_id=transaction_id, provider=request.provider.value)

        selling_price = await self.price_resolver.resolve(
            request.cost_price, request.product_code, request.provider
        )

        log.info(
            "order_submitting",
            product_code=request.product_code,
            cost_price=request.cost_price,
            selling_price=selling_price,
        )

        try:
            envelope = await adapter.purchase(
                transaction_id,
                request.product_code,
                request.destination,
                request.server_id,
            )
        except ProviderNotConfiguredError as e:
            log.error("order_provider_not_configured", error=str(e))
            raise

        status = envelope.status.to_transaction_status()
        tx = Transaction(
            id=transaction_id,
            product_name=request.product_name,
            details=request.details or f"{request.product_name} ke {request.destination}",
            cost_price=request.cost_price,
            selling_price=selling_price,
            status=status,
            timestamp=utcnow(),
            buyer_sku_code=request.product_code,
            original_customer_no=request.stored_customer_no,
            product_category=request.product_category,
            product_brand=request.product_brand,
            provider=request.provider,
            category_key=classify(
                request.product_category, request.product_brand or request.product_name
            ),
            serial_number=envelope.serial_number if status is TransactionStatus.SUKSES else None,
            failure_reason=(
                envelope.message or DEFAULT_FAILURE_REASON
                if status is TransactionStatus.GAGAL
                else None
            ),
            provider_transaction_id=envelope.provider_transaction_id,
            source=request.source,
        )

        await self.store.create(tx)
        metrics.record_order(tx.provider.value, tx.status.value, tx.selling_price)

        log.info(
            "order_created",
            status=tx.status.value,
            outcome=envelope.status.value,
            selling_price=tx.selling_price,
        )

        self._notify(tx, context="Order")
        return tx

    async def reconcile(self, transaction_id: str, context: str = "Status Check") -> ReconcileResult:
        """
        Re-query the provider for a transaction and settle it if possible.

        Terminal transactions return immediately without a network call. A
        provider error leaves the transaction Pending. The write only happens
        if the stored status is still Pending, and only the caller that
        performs the write sends a notification.

        Args:
            transaction_id: Transaction to reconcile
            context: Label used in the notification ("Status Check", "Auto Check")

        Returns:
            ReconcileResult: What happened and the transaction as it now stands

        Raises:
            TransactionNotFoundError: If the transaction does not exist
            ProviderNotConfiguredError: If provider credentials are missing
        """
        tx = await self.store.get(transaction_id)
        if tx is None:
            raise TransactionNotFoundError(transaction_id)

        log = logger.bind(transaction_id=transaction_id, provider=tx.provider.value)

        if tx.is_terminal:
            log.debug("reconcile_already_settled", status=tx.status.value)
            metrics.record_reconciliation(ReconcileOutcome.ALREADY_SETTLED.value)
            return ReconcileResult(tx, ReconcileOutcome.ALREADY_SETTLED)

        adapter = self._adapter_for(tx.provider)
        destination, server_id = split_destination(tx.original_customer_no)

        try:
            envelope = await adapter.purchase(tx.id, tx.buyer_sku_code, destination, server_id)
        except ProviderNotConfiguredError:
            metrics.record_reconciliation(ReconcileOutcome.NOT_CONFIGURED.value)
            raise

        if envelope.status is OutcomeStatus.ERROR:
            log.warning("reconcile_provider_error", message=envelope.message)
            metrics.record_reconciliation(ReconcileOutcome.PROVIDER_ERROR.value)
            return ReconcileResult(
                tx, ReconcileOutcome.PROVIDER_ERROR, envelope, envelope.message
            )

        if envelope.status is OutcomeStatus.PENDING:
            log.info("reconcile_still_pending")
            metrics.record_reconciliation(ReconcileOutcome.STILL_PENDING.value)
            return ReconcileResult(tx, ReconcileOutcome.STILL_PENDING, envelope, envelope.message)

        # Another trigger may have settled it while the provider call was in flight.
        current = await self.store.get(transaction_id)
        if current is None:
            raise TransactionNotFoundError(transaction_id)
        if current.is_terminal:
            log.info("reconcile_lost_race", status=current.status.value)
            metrics.record_reconciliation(ReconcileOutcome.LOST_RACE.value)
            return ReconcileResult(current, ReconcileOutcome.LOST_RACE, envelope)

        settled = self._settled_copy(
            current, envelope.status.to_transaction_status(), utcnow(), envelope
        )
        # Shielded: a caller timing out after the UPDATE commits must not
        # cancel the notification that belongs to it.
        applied = await asyncio.shield(self._settle(settled, envelope, context, log))

        if not applied:
            winner = await self.store.get(transaction_id) or current
            log.info("reconcile_lost_race", status=winner.status.value)
            metrics.record_reconciliation(ReconcileOutcome.LOST_RACE.value)
            return ReconcileResult(winner, ReconcileOutcome.LOST_RACE, envelope)

        return ReconcileResult(settled, ReconcileOutcome.SETTLED, envelope, envelope.message)

    async def _settle(
        self,
        settled: Transaction,
        envelope: OutcomeEnvelope,
        context: str,
        log: structlog.stdlib.BoundLogger,
    ) -> bool:
        """Apply the conditional transition and, if this call won it, notify."""
        applied = await self.store.transition(
            settled.id,
            settled.status,
            settled_at=settled.timestamp,
            serial_number=envelope.serial_number,
            failure_reason=envelope.message or DEFAULT_FAILURE_REASON,
            provider_transaction_id=envelope.provider_transaction_id,
        )
        if applied:
            self._notify(settled, context=context)
            log.info("transaction_settled", status=settled.status.value, context=context)
            metrics.record_reconciliation(ReconcileOutcome.SETTLED.value)
        return applied

    @staticmethod
    def _settled_copy(
        tx: Transaction,
        status: TransactionStatus,
        settled_at: datetime,
        envelope: OutcomeEnvelope,
    ) -> Transaction:
        """Mirror of the fields ``store.transition`` writes for a settlement."""
        return tx.copy(
            status=status,
            timestamp=settled_at,
            serial_number=envelope.serial_number if status is TransactionStatus.SUKSES else None,
            failure_reason=(
                envelope.message or DEFAULT_FAILURE_REASON
                if status is TransactionStatus.GAGAL
                else None
            ),
            provider_transaction_id=envelope.provider_transaction_id or tx.provider_transaction_id,
        )

    async def delete_order(self, transaction_id: str) -> None:
        """
        Delete a transaction regardless of status. No provider call is made.

        Raises:
            TransactionNotFoundError: If nothing was deleted
        """
        if not await self.store.delete(transaction_id):
            raise TransactionNotFoundError(transaction_id)
        logger.info("transaction_deleted", transaction_id=transaction_id)

    async def get_transaction(self, transaction_id: str) -> Transaction:
        tx = await self.store.get(transaction_id)
        if tx is None:
            raise TransactionNotFoundError(transaction_id)
        return tx

    async def list_transactions(self, filters: Optional[TransactionFilter] = None) -> List[Transaction]:
        return await self.store.list(filters)

    async def profit_report(
        self, date_from: Optional[date] = None, date_to: Optional[date] = None
    ) -> ProfitSummary:
        transactions = await self.store.list(
            TransactionFilter(
                status=TransactionStatus.SUKSES, date_from=date_from, date_to=date_to
            )
        )
        return summarize_profit(transactions, date_from, date_to)
