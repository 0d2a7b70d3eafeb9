"""
Pydantic schemas for API request/response models.
"""
from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from voucher_hub.core.lifecycle import ReconcileResult
from voucher_hub.core.models import (
    OrderRequest,
    ProfitSummary,
    Provider,
    Transaction,
    TransactionSource,
    TransactionStatus,
)
from voucher_hub.integrations.nickname import GameTitle, NicknameInquiry


class CreateOrderRequest(BaseModel):
    """Request schema for placing an order."""

    account_id: str = Field(..., min_length=1, description="Account placing the order")
    pin: str = Field(..., description="6-digit transaction PIN")
    provider: Provider = Field(..., description="Upstream provider")
    product_code: str = Field(..., min_length=1, description="Provider product code (SKU)")
    destination: str = Field(..., min_length=1, description="Customer number / game user id")
    server_id: Optional[str] = Field(default=None, description="Game server id, if any")
    cost_price: int = Field(..., ge=0, description="Provider cost price")
    product_name: str = Field(..., min_length=1, description="Display product name")
    product_category: str = Field(default="", description="Provider category")
    product_brand: str = Field(default="", description="Provider brand")
    details: Optional[str] = Field(default=None, description="Display details")
    source: TransactionSource = Field(default=TransactionSource.API, description="Order channel")

    @field_validator("pin")
    @classmethod
    def validate_pin(cls, v: str) -> str:
        """PINs are exactly six digits."""
        if len(v) != 6 or not v.isdigit():
            raise ValueError("PIN must be 6 digits")
        return v

    def to_order_request(self) -> OrderRequest:
        return OrderRequest(
            provider=self.provider,
            product_code=self.product_code.strip(),
            destination=self.destination.strip(),
            cost_price=self.cost_price,
            product_name=self.product_name,
            product_category=self.product_category,
            product_brand=self.product_brand,
            details=self.details,
            server_id=self.server_id.strip() if self.server_id else None,
            source=self.source,
        )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "account_id": "admin",
                    "pin": "123456",
                    "provider": "voucher_a",
                    "product_code": "xld10",
                    "destination": "087800001233",
                    "cost_price": 10100,
                    "product_name": "XL 10.000",
                    "product_category": "Pulsa",
                    "product_brand": "XL",
                }
            ]
        }
    }


class TransactionResponse(BaseModel):
    """Response schema for a transaction."""

    id: str = Field(..., description="Transaction id (also the provider ref_id)")
    product_name: str
    details: str
    cost_price: int
    selling_price: int
    profit: int
    status: TransactionStatus
    timestamp: datetime
    buyer_sku_code: str
    original_customer_no: str
    product_category: str
    product_brand: str
    category_key: str
    provider: Provider
    source: TransactionSource
    serial_number: Optional[str] = None
    failure_reason: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    price_repaired_at: Optional[datetime] = None

    @classmethod
    def from_transaction(cls, tx: Transaction) -> "TransactionResponse":
        return cls(
            id=tx.id,
            product_name=tx.product_name,
            details=tx.details,
            cost_price=tx.cost_price,
            selling_price=tx.selling_price,
            profit=tx.profit,
            status=tx.status,
            timestamp=tx.timestamp,
            buyer_sku_code=tx.buyer_sku_code,
            original_customer_no=tx.original_customer_no,
            product_category=tx.product_category,
            product_brand=tx.product_brand,
            category_key=tx.category_key,
            provider=tx.provider,
            source=tx.source,
            serial_number=tx.serial_number,
            failure_reason=tx.failure_reason,
            provider_transaction_id=tx.provider_transaction_id,
            price_repaired_at=tx.price_repaired_at,
        )


class TransactionListResponse(BaseModel):
    count: int
    transactions: List[TransactionResponse]


class ReconcileResponse(BaseModel):
    """Response schema for a manual status check."""

    outcome: str = Field(..., description="settled, still_pending, already_settled, lost_race, provider_error")
    changed: bool = Field(..., description="Whether this call settled the transaction")
    message: Optional[str] = Field(default=None, description="Provider message, if any")
    transaction: TransactionResponse

    @classmethod
    def from_result(cls, result: ReconcileResult) -> "ReconcileResponse":
        return cls(
            outcome=result.outcome.value,
            changed=result.changed,
            message=result.message,
            transaction=TransactionResponse.from_transaction(result.transaction),
        )


class ProviderProfit(BaseModel):
    revenue: int
    cost: int
    profit: int
    count: int


class ProfitReportResponse(BaseModel):
    """Profit over successful transactions."""

    date_from: Optional[date] = None
    date_to: Optional[date] = None
    total_revenue: int
    total_cost: int
    total_profit: int
    transaction_count: int
    by_provider: Dict[str, ProviderProfit] = Field(default_factory=dict)

    @classmethod
    def from_summary(cls, summary: ProfitSummary) -> "ProfitReportResponse":
        return cls(
            date_from=summary.date_from,
            date_to=summary.date_to,
            total_revenue=summary.total_revenue,
            total_cost=summary.total_cost,
            total_profit=summary.total_profit,
            transaction_count=summary.transaction_count,
            by_provider={
                provider: ProviderProfit(**bucket)
                for provider, bucket in summary.by_provider.items()
            },
        )


class PriceOverrideRequest(BaseModel):
    selling_price: int = Field(..., gt=0, description="Selling price charged to customers")


class PriceOverrideResponse(BaseModel):
    provider: Provider
    product_code: str
    selling_price: int
    updated_at: Optional[datetime] = None


class NicknameInquiryRequest(BaseModel):
    """Request schema for a game nickname lookup."""

    game: GameTitle = Field(..., description="Game the user id belongs to")
    user_id: str = Field(..., min_length=5, description="Game user id")
    zone_id: Optional[str] = Field(default=None, description="Zone id (Mobile Legends)")


class NicknameInquiryResponse(BaseModel):
    game: GameTitle
    is_success: bool
    nickname: Optional[str] = None
    message: str

    @classmethod
    def from_inquiry(cls, game: GameTitle, inquiry: NicknameInquiry) -> "NicknameInquiryResponse":
        return cls(
            game=game,
            is_success=inquiry.is_success,
            nickname=inquiry.nickname,
            message=inquiry.message,
        )
