"""
Domain types for the transaction lifecycle.

These are plain dataclasses shared by the engine, the store and the provider
adapters. Provider-specific response shapes never cross this boundary: every
adapter reduces its wire response to an ``OutcomeEnvelope``.
"""
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional, Tuple

SERVER_ID_SEPARATOR = "|"


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class TransactionStatus(str, Enum):
    """Lifecycle states. Sukses and Gagal are terminal."""

    PENDING = "Pending"
    SUKSES = "Sukses"
    GAGAL = "Gagal"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING


class Provider(str, Enum):
    """Upstream fulfillment providers."""

    VOUCHER_A = "voucher_a"
    VOUCHER_B = "voucher_b"

    @property
    def display_name(self) -> str:
        return {"voucher_a": "Voucher-A", "voucher_b": "Voucher-B"}[self.value]


class OutcomeStatus(str, Enum):
    """Normalized provider outcome vocabulary."""

    SUKSES = "sukses"
    PENDING = "pending"
    GAGAL = "gagal"
    ERROR = "error"

    def to_transaction_status(self) -> TransactionStatus:
        """
        Map an outcome onto the lifecycle.

        Transport/decode errors map to Gagal; callers that must not record a
        failure on error (reconciliation) check for ERROR before calling this.
        """
        if self is OutcomeStatus.SUKSES:
            return TransactionStatus.SUKSES
        if self is OutcomeStatus.PENDING:
            return TransactionStatus.PENDING
        return TransactionStatus.GAGAL


class TransactionSource(str, Enum):
    """Channel an order was placed from."""

    WEB = "web"
    API = "api"
    TELEGRAM_BOT = "telegram_bot"


@dataclass(frozen=True)
class OutcomeEnvelope:
    """Uniform result of a provider purchase/inquiry call."""

    is_success: bool
    status: OutcomeStatus
    message: Optional[str] = None
    serial_number: Optional[str] = None
    provider_transaction_id: Optional[str] = None

    @classmethod
    def error(cls, message: str) -> "OutcomeEnvelope":
        return cls(is_success=False, status=OutcomeStatus.ERROR, message=message)


@dataclass
class Transaction:
    """A single order and its settlement state."""

    id: str
    product_name: str
    details: str
    cost_price: int
    selling_price: int
    status: TransactionStatus
    timestamp: datetime
    buyer_sku_code: str
    original_customer_no: str
    product_category: str
    product_brand: str
    provider: Provider
    category_key: str = "Default"
    serial_number: Optional[str] = None
    failure_reason: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    source: TransactionSource = TransactionSource.API
    price_repaired_at: Optional[datetime] = None

    @property
    def profit(self) -> int:
        return self.selling_price - self.cost_price

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def copy(self, **changes) -> "Transaction":
        return replace(self, **changes)


@dataclass(frozen=True)
class OrderRequest:
    """Input for creating an order."""

    provider: Provider
    product_code: str
    destination: str
    cost_price: int
    product_name: str
    product_category: str = ""
    product_brand: str = ""
    details: Optional[str] = None
    server_id: Optional[str] = None
    source: TransactionSource = TransactionSource.API

    @property
    def stored_customer_no(self) -> str:
        return join_destination(self.destination, self.server_id)


@dataclass(frozen=True)
class TransactionFilter:
    """AND-combined predicates for history queries. ``None`` means any."""

    category: Optional[str] = None
    status: Optional[TransactionStatus] = None
    provider: Optional[Provider] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    def matches(self, transaction: Transaction) -> bool:
        if self.category is not None and transaction.category_key != self.category:
            return False
        if self.status is not None and transaction.status is not self.status:
            return False
        if self.provider is not None and transaction.provider is not self.provider:
            return False
        day = transaction.timestamp.astimezone(timezone.utc).date()
        if self.date_from is not None and day < self.date_from:
            return False
        if self.date_to is not None and day > self.date_to:
            return False
        return True


@dataclass(frozen=True)
class PinVerification:
    valid: bool
    message: Optional[str] = None


@dataclass
class ProfitSummary:
    """Totals over successful transactions."""

    total_revenue: int = 0
    total_cost: int = 0
    transaction_count: int = 0
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    by_provider: dict = field(default_factory=dict)

    @property
    def total_profit(self) -> int:
        return self.total_revenue - self.total_cost


def join_destination(destination: str, server_id: Optional[str]) -> str:
    """Store a destination and optional game server id as one customer number."""
    if server_id:
        return f"{destination}{SERVER_ID_SEPARATOR}{server_id}"
    return destination


def split_destination(customer_no: str) -> Tuple[str, Optional[str]]:
    """Inverse of ``join_destination``."""
    destination, sep, server_id = customer_no.partition(SERVER_ID_SEPARATOR)
    if not sep:
        return customer_no, None
    return destination, server_id or None
