"""SQLAlchemy database models for the voucher hub."""
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Index,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class TransactionRecord(Base):
    """
    Transaction log table.

    One row per order attempt. ``id`` is the client-generated reference that is
    also sent to the provider as its idempotency key.
    """

    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    details: Mapped[str] = mapped_column(Text, nullable=False, default="")
    cost_price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    selling_price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    serial_number: Mapped[str | None] = mapped_column(Text, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    buyer_sku_code: Mapped[str] = mapped_column(String(100), nullable=False)
    original_customer_no: Mapped[str] = mapped_column(String(255), nullable=False)
    product_category: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    product_brand: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    category_key: Mapped[str] = mapped_column(String(50), nullable=False, default="Default")
    provider: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    provider_transaction_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    source: Mapped[str] = mapped_column(String(20), nullable=False, default="api")
    price_repaired_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )

    __table_args__ = (
        CheckConstraint("cost_price >= 0", name="non_negative_cost"),
        CheckConstraint(
            "status IN ('Pending', 'Sukses', 'Gagal')",
            name="valid_transaction_status",
        ),
        CheckConstraint(
            "provider IN ('voucher_a', 'voucher_b')",
            name="valid_provider",
        ),
        Index("idx_transactions_status_timestamp", "status", "timestamp"),
    )

    def __repr__(self) -> str:
        """String representation of TransactionRecord."""
        return (
            f"<TransactionRecord(id={self.id}, provider={self.provider}, "
            f"status={self.status}, selling_price={self.selling_price})>"
        )


class PriceOverride(Base):
    """Admin-configured selling price for one provider product code."""

    __tablename__ = "price_overrides"

    provider: Mapped[str] = mapped_column(String(20), primary_key=True)
    product_code: Mapped[str] = mapped_column(String(100), primary_key=True)
    selling_price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now()
    )

    __table_args__ = (CheckConstraint("selling_price > 0", name="positive_override"),)

    def __repr__(self) -> str:
        return (
            f"<PriceOverride(provider={self.provider}, product_code={self.product_code}, "
            f"selling_price={self.selling_price})>"
        )


class AppSetting(Base):
    """Key/value runtime settings (provider credentials, notification channels)."""

    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<AppSetting(key={self.key})>"
