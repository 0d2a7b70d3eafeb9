"""Exception taxonomy for the lifecycle engine and its collaborators."""
from typing import Optional


class VoucherHubError(Exception):
    """Base exception for voucher hub errors."""

    pass


class ProviderNotConfiguredError(VoucherHubError):
    """
    Raised before any network call when provider credentials are missing.

    Distinct from transient failures: callers should ask for setup, not retry.
    """

    def __init__(self, provider: str, missing: Optional[list] = None):
        self.provider = provider
        self.missing = missing or []
        detail = f" (missing: {', '.join(self.missing)})" if self.missing else ""
        super().__init__(f"{provider} credentials are not configured{detail}")


class StoreError(VoucherHubError):
    """Raised when the transaction store cannot complete a read or write."""

    pass


class TransactionNotFoundError(VoucherHubError):
    """Raised when a transaction id does not exist."""

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} not found")


class PinRejectedError(VoucherHubError):
    """Raised when PIN verification fails; no order is created."""

    pass


class OrderValidationError(VoucherHubError):
    """Raised when order input validation fails."""

    pass
