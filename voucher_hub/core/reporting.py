"""Profit reporting over settled transactions."""
from datetime import date, timezone
from typing import Iterable, Optional

from voucher_hub.core.models import ProfitSummary, Transaction, TransactionStatus


def summarize_profit(
    transactions: Iterable[Transaction],
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> ProfitSummary:
    """
    Total revenue, cost and profit of successful transactions.

    Only Sukses transactions count. A transaction is in range when its UTC
    settlement date falls within ``[date_from, date_to]``, both inclusive.
    """
    summary = ProfitSummary(date_from=date_from, date_to=date_to)
    for tx in transactions:
        if tx.status is not TransactionStatus.SUKSES:
            continue
        day = tx.timestamp.astimezone(timezone.utc).date()
        if date_from is not None and day < date_from:
            continue
        if date_to is not None and day > date_to:
            continue

        summary.total_revenue += tx.selling_price
        summary.total_cost += tx.cost_price
        summary.transaction_count += 1

        bucket = summary.by_provider.setdefault(
            tx.provider.value, {"revenue": 0, "cost": 0, "profit": 0, "count": 0}
        )
        bucket["revenue"] += tx.selling_price
        bucket["cost"] += tx.cost_price
        bucket["profit"] += tx.profit
        bucket["count"] += 1
    return summary
