"""Core transaction lifecycle logic."""
from .errors import (
    OrderValidationError,
    PinRejectedError,
    ProviderNotConfiguredError,
    StoreError,
    TransactionNotFoundError,
    VoucherHubError,
)
from .models import (
    OrderRequest,
    OutcomeEnvelope,
    OutcomeStatus,
    Provider,
    Transaction,
    TransactionFilter,
    TransactionStatus,
)

__all__ = [
    "OrderValidationError",
    "OrderRequest",
    "OutcomeEnvelope",
    "OutcomeStatus",
    "PinRejectedError",
    "Provider",
    "ProviderNotConfiguredError",
    "StoreError",
    "Transaction",
    "TransactionFilter",
    "TransactionNotFoundError",
    "TransactionStatus",
    "VoucherHubError",
]
