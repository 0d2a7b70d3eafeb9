"""
API routes for ordering, transaction history, reports and price administration.
"""
import time
from datetime import date
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from voucher_hub.core.errors import (
    OrderValidationError,
    PinRejectedError,
    ProviderNotConfiguredError,
    StoreError,
    TransactionNotFoundError,
)
from voucher_hub.core.models import Provider, TransactionFilter, TransactionStatus
from voucher_hub.services import Services

from .dependencies import get_services
from .schemas import (
    CreateOrderRequest,
    NicknameInquiryRequest,
    NicknameInquiryResponse,
    PriceOverrideRequest,
    PriceOverrideResponse,
    ProfitReportResponse,
    ReconcileResponse,
    TransactionListResponse,
    TransactionResponse,
)

logger = structlog.get_logger(__name__)

# Create routers
order_router = APIRouter(prefix="/orders", tags=["orders"])
transaction_router = APIRouter(prefix="/transactions", tags=["transactions"])
report_router = APIRouter(prefix="/reports", tags=["reports"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])
monitoring_router = APIRouter(tags=["monitoring"])


def _needs_setup(error: ProviderNotConfiguredError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"message": str(error), "provider": error.provider, "needs_setup": True},
    )


def _store_failure(error: StoreError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Transaction store error: {error}",
    )


@order_router.post(
    "",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Place an order",
    description="Verify the PIN, submit the order to the provider and record the outcome",
)
async def create_order(
    request: CreateOrderRequest,
    services: Services = Depends(get_services),
) -> TransactionResponse:
    """
    Place an order.

    A provider error is still recorded (as Gagal) and returned with 201; only
    configuration, PIN and validation problems prevent a transaction from
    being created.
    """
    start_time = time.time()
    logger.info(
        "api_create_order_request",
        account_id=request.account_id,
        provider=request.provider.value,
        product_code=request.product_code,
    )

    try:
        tx = await services.engine.place_order(
            request.account_id, request.pin, request.to_order_request()
        )
    except PinRejectedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except OrderValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ProviderNotConfiguredError as e:
        raise _needs_setup(e)
    except StoreError as e:
        logger.error("api_create_order_store_error", error=str(e))
        raise _store_failure(e)

    logger.info(
        "api_create_order_success",
        transaction_id=tx.id,
        status=tx.status.value,
        duration_seconds=time.time() - start_time,
    )
    return TransactionResponse.from_transaction(tx)


@order_router.post(
    "/nickname-inquiry",
    response_model=NicknameInquiryResponse,
    summary="Look up a game nickname",
    description="Resolve the in-game nickname for a Free Fire or Mobile Legends account before a top-up",
)
async def inquire_nickname(
    request: NicknameInquiryRequest,
    services: Services = Depends(get_services),
) -> NicknameInquiryResponse:
    try:
        inquiry = await services.nickname_inquiry.inquire(
            request.game, request.user_id, request.zone_id
        )
    except OrderValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ProviderNotConfiguredError as e:
        raise _needs_setup(e)
    return NicknameInquiryResponse.from_inquiry(request.game, inquiry)


@transaction_router.get(
    "",
    response_model=TransactionListResponse,
    summary="List transactions",
    description="Newest first; all filters are combined with AND",
)
async def list_transactions(
    category: Optional[str] = Query(default=None, description="Display category"),
    status_filter: Optional[TransactionStatus] = Query(default=None, alias="status"),
    provider: Optional[Provider] = Query(default=None),
    date_from: Optional[date] = Query(default=None, description="Inclusive start date (UTC)"),
    date_to: Optional[date] = Query(default=None, description="Inclusive end date (UTC)"),
    services: Services = Depends(get_services),
) -> TransactionListResponse:
    filters = TransactionFilter(
        category=category,
        status=status_filter,
        provider=provider,
        date_from=date_from,
        date_to=date_to,
    )
    try:
        transactions = await services.engine.list_transactions(filters)
    except StoreError as e:
        raise _store_failure(e)

    return TransactionListResponse(
        count=len(transactions),
        transactions=[TransactionResponse.from_transaction(tx) for tx in transactions],
    )


@transaction_router.get(
    "/{transaction_id}",
    response_model=TransactionResponse,
    summary="Get transaction",
)
async def get_transaction(
    transaction_id: str,
    services: Services = Depends(get_services),
) -> TransactionResponse:
    try:
        tx = await services.engine.get_transaction(transaction_id)
    except TransactionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except StoreError as e:
        raise _store_failure(e)
    return TransactionResponse.from_transaction(tx)


@transaction_router.post(
    "/{transaction_id}/reconcile",
    response_model=ReconcileResponse,
    summary="Check transaction status",
    description="Re-query the provider for a Pending transaction",
)
async def reconcile_transaction(
    transaction_id: str,
    services: Services = Depends(get_services),
) -> ReconcileResponse:
    try:
        result = await services.engine.reconcile(transaction_id, context="Status Check")
    except TransactionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ProviderNotConfiguredError as e:
        raise _needs_setup(e)
    except StoreError as e:
        raise _store_failure(e)

    logger.info(
        "api_reconcile_completed",
        transaction_id=transaction_id,
        outcome=result.outcome.value,
    )
    return ReconcileResponse.from_result(result)


@transaction_router.delete(
    "/{transaction_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete transaction",
)
async def delete_transaction(
    transaction_id: str,
    services: Services = Depends(get_services),
) -> Response:
    try:
        await services.engine.delete_order(transaction_id)
    except TransactionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except StoreError as e:
        raise _store_failure(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@report_router.get(
    "/profit",
    response_model=ProfitReportResponse,
    summary="Profit report",
    description="Revenue, cost and profit over successful transactions",
)
async def profit_report(
    date_from: Optional[date] = Query(default=None),
    date_to: Optional[date] = Query(default=None),
    services: Services = Depends(get_services),
) -> ProfitReportResponse:
    if date_from and date_to and date_from > date_to:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="date_from must not be after date_to",
        )
    try:
        summary = await services.engine.profit_report(date_from, date_to)
    except StoreError as e:
        raise _store_failure(e)
    return ProfitReportResponse.from_summary(summary)


@admin_router.get(
    "/prices",
    response_model=list[PriceOverrideResponse],
    summary="List selling price overrides",
)
async def list_price_overrides(
    services: Services = Depends(get_services),
) -> list[PriceOverrideResponse]:
    overrides = await services.price_overrides.list_overrides()
    return [
        PriceOverrideResponse(
            provider=Provider(o.provider),
            product_code=o.product_code,
            selling_price=o.selling_price,
            updated_at=o.updated_at,
        )
        for o in overrides
    ]


@admin_router.put(
    "/prices/{provider}/{product_code}",
    response_model=PriceOverrideResponse,
    summary="Set a selling price override",
)
async def set_price_override(
    provider: Provider,
    product_code: str,
    request: PriceOverrideRequest,
    services: Services = Depends(get_services),
) -> PriceOverrideResponse:
    try:
        await services.price_overrides.set_override(provider, product_code, request.selling_price)
    except StoreError as e:
        raise _store_failure(e)
    return PriceOverrideResponse(
        provider=provider,
        product_code=product_code,
        selling_price=request.selling_price,
    )


@admin_router.delete(
    "/prices/{provider}/{product_code}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a selling price override",
)
async def delete_price_override(
    provider: Provider,
    product_code: str,
    services: Services = Depends(get_services),
) -> Response:
    try:
        deleted = await services.price_overrides.delete_override(provider, product_code)
    except StoreError as e:
        raise _store_failure(e)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No price override for {provider.value}/{product_code}",
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@monitoring_router.get(
    "/health",
    summary="Health check",
    description="Check database connectivity and scheduler state",
)
async def health(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Overall health check."""
    return await services.health.check_all()


@monitoring_router.get(
    "/health/live",
    summary="Liveness check",
)
async def liveness(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Kubernetes liveness endpoint."""
    return await services.health.liveness()


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
