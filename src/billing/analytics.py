"""Usage Billing & Settlement — Usage Analytics.

Read-only views over invoices and the usage ledger: consumption trend
per customer across periods, top consumers, and collection status.
"""

import statistics
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from src.billing.periods import parse_period, shift_period
from src.ledger.models import PaymentStatus
from src.ledger.money import ZERO, quantize_money


@dataclass
class PeriodConsumption:
    """Consumption and billed amount for one customer and period."""

    customer_id: str
    period: str
    consumption: Decimal = ZERO
    billed: Decimal = ZERO
    trend_pct: float = 0.0


@dataclass
class CollectionStatus:
    period: str
    billed: Decimal = ZERO
    collected: Decimal = ZERO
    outstanding: Decimal = ZERO
    overdue_count: int = 0
    collection_rate_pct: float = 0.0
    status: str = "healthy"


class UsageAnalytics:
    """Consumption trends, rankings and collection health."""

    def __init__(self, store) -> None:
        self._store = store

    # ── Consumption ───────────────────────────────────────────────────

    async def consumption_trend(
        self,
        customer_id: str,
        end_period: str,
        periods: int = 6,
    ) -> List[PeriodConsumption]:
        """Consumption per period, oldest first, with change vs the prior period."""
        parse_period(end_period)
        invoices = await self._store.list_invoices(customer_id=customer_id)
        by_period: Dict[str, PeriodConsumption] = {}
        for invoice in invoices:
            row = by_period.setdefault(
                invoice.period, PeriodConsumption(customer_id, invoice.period),
            )
            row.consumption += invoice.consumption
            row.billed += invoice.total

        results: List[PeriodConsumption] = []
        for offset in range(periods - 1, -1, -1):
            period = shift_period(end_period, -offset)
            row = by_period.get(period, PeriodConsumption(customer_id, period))
            if results:
                prev = results[-1].consumption
                if prev > 0:
                    row.trend_pct = round(float((row.consumption - prev) / prev * 100), 2)
            results.append(row)
        return results

    async def top_consumers(self, period: str, limit: int = 10) -> List[Dict[str, object]]:
        """Rank customers by consumption billed in a period."""
        parse_period(period)
        totals: Dict[str, Decimal] = {}
        billed: Dict[str, Decimal] = {}
        for invoice in await self._store.list_invoices(period=period):
            totals[invoice.customer_id] = totals.get(invoice.customer_id, ZERO) + invoice.consumption
            billed[invoice.customer_id] = billed.get(invoice.customer_id, ZERO) + invoice.total

        ranked = sorted(totals.items(), key=lambda x: x[1], reverse=True)
        return [
            {
                "customer_id": customer_id,
                "consumption": consumption,
                "billed": billed[customer_id],
                "rank": idx + 1,
            }
            for idx, (customer_id, consumption) in enumerate(ranked[:limit])
        ]

    async def usage_profile(
        self,
        customer_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Dict[str, object]:
        """Summary statistics of metered increments in the usage ledger."""
        entries = await self._store.list_usage(customer_id=customer_id, start=start, end=end)
        quantities = [float(e.quantity) for e in entries]
        if not quantities:
            return {"customer_id": customer_id, "entries": 0}
        mean = statistics.mean(quantities)
        stdev = statistics.stdev(quantities) if len(quantities) > 1 else 0.0
        return {
            "customer_id": customer_id,
            "entries": len(quantities),
            "total": sum((e.quantity for e in entries), ZERO),
            "mean": round(mean, 4),
            "stdev": round(stdev, 4),
            "max": max(quantities),
            # Low variation suggests steady household use.
            "steady": len(quantities) >= 5 and mean > 0 and stdev / mean < 0.3,
        }

    # ── Collections ───────────────────────────────────────────────────

    async def collection_status(self, period: str) -> CollectionStatus:
        parse_period(period)
        status = CollectionStatus(period=period)
        for invoice in await self._store.list_invoices(period=period):
            status.billed += invoice.total
            if invoice.status is PaymentStatus.SETTLEMENT:
                status.collected += invoice.total
            else:
                status.outstanding += invoice.total
                if invoice.overdue:
                    status.overdue_count += 1

        if status.billed > 0:
            status.collection_rate_pct = round(float(status.collected / status.billed * 100), 2)
        else:
            status.collection_rate_pct = 100.0
        status.billed = quantize_money(status.billed)
        status.collected = quantize_money(status.collected)
        status.outstanding = quantize_money(status.outstanding)

        if status.collection_rate_pct < 50:
            status.status = "critical"
        elif status.collection_rate_pct < 75:
            status.status = "warning"
        return status
