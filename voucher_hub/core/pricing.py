"""
Selling price resolution.

An admin override keyed by (provider, product code) wins when it is positive;
otherwise a tiered markup is added to the provider cost.
"""
from typing import Optional, Protocol

import structlog

from voucher_hub.core.models import Provider
from voucher_hub.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

LOW_TIER_CEILING = 20_000
MID_TIER_CEILING = 50_000

LOW_TIER_MARKUP = 1_000
MID_TIER_MARKUP = 1_500
HIGH_TIER_MARKUP = 2_000


class PriceOverrideSource(Protocol):
    """Lookup of admin-configured selling prices."""

    async def get_override(self, provider: Provider, product_code: str) -> Optional[int]:
        ...


def default_selling_price(cost_price: int) -> int:
    """Apply the tiered default markup."""
    if cost_price < LOW_TIER_CEILING:
        return cost_price + LOW_TIER_MARKUP
    if cost_price <= MID_TIER_CEILING:
        return cost_price + MID_TIER_MARKUP
    return cost_price + HIGH_TIER_MARKUP


class PriceResolver:
    """Computes the price charged to the end customer."""

    def __init__(self, overrides: Optional[PriceOverrideSource] = None):
        self.overrides = overrides

    async def resolve(self, cost_price: int, product_code: str, provider: Provider) -> int:
        """
        Resolve the selling price for a product.

        Args:
            cost_price: Provider cost (non-negative)
            product_code: Provider-scoped product code
            provider: Provider the code belongs to

        Returns:
            int: Positive selling price
        """
        if cost_price < 0:
            raise ValueError("cost_price must be non-negative")

        if self.overrides is not None:
            try:
                override = await self.overrides.get_override(provider, product_code)
            except Exception as e:
                # Store unavailable: fall through to the default markup.
                logger.warning(
                    "price_override_lookup_failed",
                    provider=provider.value,
                    product_code=product_code,
                    error=str(e),
                )
                metrics.record_price_override_failure()
                override = None

            if override is not None and override > 0:
                return int(override)

        return default_selling_price(cost_price)
