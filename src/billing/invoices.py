"""Usage Billing & Settlement — Periodic Invoice Lifecycle.

Generates one invoice per meter and period, settles invoices (singly or
all at once), reverses gateway outcomes, and flags overdue invoices.

Invoice states: ``Pending`` moves to ``Settlement`` (paid) or to one of
the gateway's unpaid outcomes. ``overdue`` is an orthogonal flag set by
the sweep once the due date passes while the invoice is still Pending.

The meter's unpaid counter is only ever moved by payment and reversal;
generation and deletion leave it alone because telemetry already
counted the usage.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from src.billing.config import DEFAULT_BILLING_CONFIG, BillingConfig, PaymentMethod
from src.billing.late_fee import compute_late_fee, days_between
from src.billing.locks import KeyedLock
from src.billing.periods import (
    current_period,
    due_date_for_period,
    parse_period,
    previous_period,
)
from src.billing.tariff import compute_usage_cost
from src.errors import (
    AlreadyExistsError,
    AlreadyPaidError,
    ErrorCode,
    ErrorResponse,
    ForbiddenError,
    InvalidStateError,
    NegativeConsumptionError,
    NotFoundError,
    handle_timeout,
    to_error_response,
)
from src.ledger.accounts import adjust_unpaid_consumption
from src.ledger.models import Invoice, PaymentStatus, new_id
from src.ledger.money import ZERO, format_rupiah, quantize_money
from src.logging_config import log_performance
from src.notifications import NotificationCategory, NotificationCenter, NotificationQueue
from src.payments import (
    CheckoutRequest,
    CheckoutSession,
    LineItem,
    PaymentGatewayClient,
    SnapGatewayClient,
    multi_order_id,
    single_order_id,
)

logger = logging.getLogger(__name__)


def _fmt_qty(quantity: Decimal) -> str:
    return f"{quantity.normalize():f}"


# ── Results ──────────────────────────────────────────────────────────


class BatchOutcome(Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class BatchItemResult:
    """Outcome of one member of a batch job."""

    key: str
    outcome: BatchOutcome
    invoice_id: Optional[str] = None
    error: Optional[ErrorResponse] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"key": self.key, "outcome": self.outcome.value}
        if self.invoice_id:
            data["invoice_id"] = self.invoice_id
        if self.error is not None:
            data.update(self.error.to_dict())
        return data


@dataclass
class BatchSummary:
    """Per-item outcomes of a batch job; one failure never aborts the rest."""

    operation: str
    period: Optional[str] = None
    results: List[BatchItemResult] = field(default_factory=list)

    def _with(self, outcome: BatchOutcome) -> List[BatchItemResult]:
        return [r for r in self.results if r.outcome is outcome]

    @property
    def success(self) -> List[BatchItemResult]:
        return self._with(BatchOutcome.SUCCESS)

    @property
    def failed(self) -> List[BatchItemResult]:
        return self._with(BatchOutcome.FAILED)

    @property
    def skipped(self) -> List[BatchItemResult]:
        return self._with(BatchOutcome.SKIPPED)

    @property
    def counts(self) -> Dict[str, int]:
        return {o.value: len(self._with(o)) for o in BatchOutcome}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "period": self.period,
            **self.counts,
            "items": [r.to_dict() for r in self.results],
        }


@dataclass
class PaymentReceipt:
    """What a successful Pay or PayAll settled."""

    customer_id: str
    invoices: List[Invoice]
    consumption: Decimal
    billed: Decimal
    late_fee: Decimal
    amount_paid: Decimal
    paid_at: datetime
    payment_method: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "customer_id": self.customer_id,
            "invoice_ids": [i.invoice_id for i in self.invoices],
            "consumption": str(self.consumption),
            "billed": str(self.billed),
            "late_fee": str(self.late_fee),
            "amount_paid": str(self.amount_paid),
            "paid_at": self.paid_at.isoformat(),
            "payment_method": self.payment_method,
        }


@dataclass
class UnpaidLine:
    invoice: Invoice
    days_late: int
    late_fee: Decimal
    total_with_fee: Decimal


@dataclass
class UnpaidSummary:
    customer_id: str
    lines: List[UnpaidLine] = field(default_factory=list)

    @property
    def total_billed(self) -> Decimal:
        return sum((l.invoice.total for l in self.lines), ZERO)

    @property
    def total_late_fee(self) -> Decimal:
        return sum((l.late_fee for l in self.lines), ZERO)

    @property
    def grand_total(self) -> Decimal:
        return self.total_billed + self.total_late_fee

    def to_dict(self) -> Dict[str, Any]:
        return {
            "customer_id": self.customer_id,
            "count": len(self.lines),
            "total_billed": str(self.total_billed),
            "total_late_fee": str(self.total_late_fee),
            "grand_total": str(self.grand_total),
            "invoices": [
                {
                    "invoice_id": l.invoice.invoice_id,
                    "period": l.invoice.period,
                    "total": str(l.invoice.total),
                    "days_late": l.days_late,
                    "late_fee": str(l.late_fee),
                    "total_with_fee": str(l.total_with_fee),
                }
                for l in self.lines
            ],
        }


@dataclass
class MonthlyReport:
    period: str
    invoice_count: int = 0
    total_consumption: Decimal = ZERO
    total_billed: Decimal = ZERO
    total_paid: Decimal = ZERO
    total_unpaid: Decimal = ZERO
    total_late_fee: Decimal = ZERO
    paid_count: int = 0
    unpaid_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": self.period,
            "invoice_count": self.invoice_count,
            "total_consumption": str(self.total_consumption),
            "total_billed": str(self.total_billed),
            "total_paid": str(self.total_paid),
            "total_unpaid": str(self.total_unpaid),
            "total_late_fee": str(self.total_late_fee),
            "paid_count": self.paid_count,
            "unpaid_count": self.unpaid_count,
        }


# ── Lifecycle ────────────────────────────────────────────────────────


class InvoiceLifecycle:
    """Periodic invoices for metered accounts.

    Generation for one (meter, period) and every payment operation on a
    customer's invoices are serialized in-process with keyed locks; the
    store's unit of work makes each operation all-or-nothing.

    Example:
        lifecycle = InvoiceLifecycle(store, notifications=NotificationCenter())
        invoice = await lifecycle.generate_for_period("meter-1", "2024-05")
        receipt = await lifecycle.pay(invoice.invoice_id, principal_id="cust-1")
    """

    def __init__(
        self,
        store,
        notifications: Optional[NotificationCenter] = None,
        gateway: Optional[PaymentGatewayClient] = None,
        config: Optional[BillingConfig] = None,
    ) -> None:
        self._store = store
        self._notifications = notifications
        self._gateway = gateway or SnapGatewayClient()
        self._config = config or DEFAULT_BILLING_CONFIG
        self._locks = KeyedLock()

    @property
    def config(self) -> BillingConfig:
        return self._config

    def _now(self, now: Optional[datetime]) -> datetime:
        return now or datetime.now(timezone.utc)

    def _queue(self) -> NotificationQueue:
        return NotificationQueue(self._notifications)

    def _late_fee(self, invoice: Invoice, now: datetime) -> Decimal:
        return compute_late_fee(
            invoice.billed_total,
            days_between(invoice.due_date, now),
            rate_per_month=self._config.late_fee_rate_per_month,
            days_per_month=self._config.late_fee_days_per_month,
        )

    @staticmethod
    def _ensure_payable(invoice: Invoice) -> None:
        if invoice.status is PaymentStatus.SETTLEMENT:
            raise AlreadyPaidError(f"Invoice {invoice.invoice_id} is already paid")
        if invoice.status is not PaymentStatus.PENDING:
            raise InvalidStateError(
                f"Invoice {invoice.invoice_id} is {invoice.status.value} and cannot be paid"
            )

    @staticmethod
    def _ensure_owner(invoice: Invoice, principal_id: Optional[str]) -> None:
        if principal_id is not None and invoice.customer_id != principal_id:
            raise ForbiddenError(f"Invoice {invoice.invoice_id} does not belong to {principal_id}")

    @staticmethod
    def _settle(invoice: Invoice, late_fee: Decimal, method: str, now: datetime) -> None:
        invoice.late_fee = late_fee
        invoice.total = invoice.billed_total + late_fee
        invoice.status = PaymentStatus.SETTLEMENT
        invoice.paid_at = now
        invoice.payment_method = method
        invoice.updated_at = now

    async def _require_invoice(self, tx, invoice_id: str) -> Invoice:
        invoice = await tx.get_invoice(invoice_id)
        if invoice is None:
            raise NotFoundError(
                f"Invoice not found: {invoice_id}",
                error_code=ErrorCode.INVOICE_NOT_FOUND,
                resource_type="invoice",
                resource_id=invoice_id,
            )
        return invoice

    async def _require_meter(self, tx, meter_id: str):
        meter = await tx.get_meter(meter_id)
        if meter is None:
            raise NotFoundError(
                f"Meter not found: {meter_id}",
                error_code=ErrorCode.METER_NOT_FOUND,
                resource_type="meter",
                resource_id=meter_id,
            )
        return meter

    # ── Generation ────────────────────────────────────────────────────

    async def generate_for_period(
        self,
        meter_id: str,
        period: str,
        now: Optional[datetime] = None,
    ) -> Invoice:
        """Create the invoice for one meter and period.

        Raises:
            NotFoundError: meter or its tariff tier is missing.
            AlreadyExistsError: the (meter, period) invoice exists.
            NegativeConsumptionError: the lifetime reading is below the
                previous invoice's reading.
        """
        parse_period(period)
        now = self._now(now)
        tz = self._config.tzinfo
        queue = self._queue()

        async with self._locks.hold(("generate", meter_id, period)):
            async with self._store.transaction() as tx:
                meter = await self._require_meter(tx, meter_id)
                if await tx.find_invoice(meter_id, period) is not None:
                    raise AlreadyExistsError(
                        f"Invoice already exists for meter {meter_id} period {period}"
                    )
                tier = await tx.get_tariff(meter.tariff_tier_id)
                if tier is None:
                    raise NotFoundError(
                        f"Tariff tier not found: {meter.tariff_tier_id}",
                        resource_type="tariff_tier",
                        resource_id=meter.tariff_tier_id,
                    )

                prior = await tx.find_invoice(meter_id, previous_period(period))
                previous_reading = prior.current_reading if prior is not None else ZERO
                consumption = meter.lifetime_reading - previous_reading
                if consumption < ZERO:
                    raise NegativeConsumptionError(
                        f"Negative consumption for meter {meter_id} in {period}: "
                        f"{meter.lifetime_reading} < {previous_reading}",
                        meter_id=meter_id,
                        previous_reading=previous_reading,
                        current_reading=meter.lifetime_reading,
                    )

                cost = compute_usage_cost(consumption, tier, self._config.tariff_threshold_units)
                due_date = due_date_for_period(period, tz, self._config.due_day_of_month)
                invoice = Invoice(
                    invoice_id=new_id(),
                    customer_id=meter.customer_id,
                    meter_id=meter_id,
                    period=period,
                    previous_reading=previous_reading,
                    current_reading=meter.lifetime_reading,
                    consumption=consumption,
                    usage_cost=quantize_money(cost.usage_cost),
                    base_fee=quantize_money(cost.base_fee),
                    total=quantize_money(cost.total),
                    due_date=due_date,
                    created_at=now,
                    updated_at=now,
                )
                await tx.insert_invoice(invoice)

                meter.next_due_date = due_date
                await tx.save_meter(meter)

                queue.notify(
                    meter.customer_id,
                    "Tagihan Air Baru",
                    f"Tagihan air untuk periode {period} sebesar {format_rupiah(invoice.total)}. "
                    f"Total pemakaian: {_fmt_qty(consumption)} m³. "
                    f"Jatuh tempo: {due_date.strftime('%d/%m/%Y')}",
                    NotificationCategory.TRANSACTION,
                    link="/pembayaran",
                    now=now,
                )

        logger.info(
            "Generated invoice %s for meter %s period %s total %s",
            invoice.invoice_id, meter_id, period, invoice.total,
            extra={"invoice_id": invoice.invoice_id, "meter_id": meter_id,
                   "amount": str(invoice.total)},
        )
        await queue.flush()
        return invoice

    @log_performance(threshold_ms=30000, include_args=True)
    async def generate_for_all_active_meters(
        self,
        period: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BatchSummary:
        """Generate the period's invoice for every active meter.

        Meters run concurrently (bounded by ``batch_concurrency``); each
        one is classified as success, failed or skipped (already billed).
        """
        now = self._now(now)
        period = period or current_period(now, self._config.tzinfo)
        parse_period(period)
        meters = await self._store.list_meters(active_only=True)

        async def generate(meter) -> BatchItemResult:
            invoice = await self.generate_for_period(meter.meter_id, period, now=now)
            return BatchItemResult(meter.meter_id, BatchOutcome.SUCCESS, invoice_id=invoice.invoice_id)

        summary = await self._run_batch(
            "generate", period, [(m.meter_id, m) for m in meters], generate,
        )
        logger.info(
            "Invoice generation for %s: %d success, %d failed, %d skipped",
            period, len(summary.success), len(summary.failed), len(summary.skipped),
        )
        return summary

    async def _run_batch(
        self,
        operation: str,
        period: Optional[str],
        items: Iterable[tuple],
        worker: Callable[[Any], Awaitable[BatchItemResult]],
    ) -> BatchSummary:
        semaphore = asyncio.Semaphore(max(1, self._config.batch_concurrency))
        timeout = self._config.batch_item_timeout_seconds

        async def run_one(key: str, item: Any) -> BatchItemResult:
            async with semaphore:
                try:
                    if timeout:
                        return await asyncio.wait_for(worker(item), timeout)
                    return await worker(item)
                except AlreadyExistsError:
                    return BatchItemResult(key, BatchOutcome.SKIPPED)
                except asyncio.TimeoutError:
                    logger.warning("%s: item %s timed out after %ss", operation, key, timeout)
                    return BatchItemResult(key, BatchOutcome.FAILED, error=handle_timeout(timeout))
                except Exception as exc:
                    logger.warning("%s: item %s failed: %s", operation, key, exc)
                    return BatchItemResult(key, BatchOutcome.FAILED, error=to_error_response(exc))

        results = await asyncio.gather(*(run_one(key, item) for key, item in items))
        return BatchSummary(operation=operation, period=period, results=list(results))

    # ── Payment ───────────────────────────────────────────────────────

    async def pay(
        self,
        invoice_id: str,
        principal_id: Optional[str] = None,
        method: Union[PaymentMethod, str] = PaymentMethod.MANUAL,
        now: Optional[datetime] = None,
    ) -> PaymentReceipt:
        """Settle one Pending invoice, adding the late fee accrued so far.

        Raises:
            NotFoundError, ForbiddenError, AlreadyPaidError, InvalidStateError
        """
        now = self._now(now)
        method = method.value if isinstance(method, PaymentMethod) else method
        head = await self._require_invoice(self._store, invoice_id)
        self._ensure_owner(head, principal_id)
        queue = self._queue()

        async with self._locks.hold(("customer", head.customer_id)):
            async with self._store.transaction() as tx:
                invoice = await self._require_invoice(tx, invoice_id)
                self._ensure_payable(invoice)
                meter = await self._require_meter(tx, invoice.meter_id)

                late_fee = self._late_fee(invoice, now)
                self._settle(invoice, late_fee, method, now)
                adjust_unpaid_consumption(meter, -invoice.consumption, floor_at_zero=True)
                await tx.save_invoice(invoice)
                await tx.save_meter(meter)

                fee_note = (
                    f" (termasuk denda keterlambatan {format_rupiah(late_fee)})"
                    if late_fee > 0 else ""
                )
                queue.notify(
                    invoice.customer_id,
                    "Pembayaran Berhasil",
                    f"Pembayaran tagihan air periode {invoice.period} sebesar "
                    f"{format_rupiah(invoice.total)}{fee_note} telah berhasil",
                    NotificationCategory.TRANSACTION,
                    link="/riwayat-tagihan",
                    now=now,
                )

        logger.info(
            "Invoice %s paid via %s: %s (late fee %s)",
            invoice_id, method, invoice.total, late_fee,
            extra={"invoice_id": invoice_id, "amount": str(invoice.total)},
        )
        await queue.flush()
        return PaymentReceipt(
            customer_id=invoice.customer_id,
            invoices=[invoice],
            consumption=invoice.consumption,
            billed=invoice.billed_total,
            late_fee=late_fee,
            amount_paid=invoice.total,
            paid_at=now,
            payment_method=method,
        )

    async def pay_all(
        self,
        customer_id: str,
        principal_id: Optional[str] = None,
        method: Union[PaymentMethod, str] = PaymentMethod.MANUAL,
        now: Optional[datetime] = None,
    ) -> PaymentReceipt:
        """Settle every Pending invoice of a customer in one transaction.

        Each meter's unpaid counter is decremented once by the summed
        consumption of its settled invoices.
        """
        if principal_id is not None and principal_id != customer_id:
            raise ForbiddenError(f"{principal_id} cannot pay invoices of {customer_id}")
        now = self._now(now)
        method = method.value if isinstance(method, PaymentMethod) else method
        queue = self._queue()

        async with self._locks.hold(("customer", customer_id)):
            async with self._store.transaction() as tx:
                pending = await tx.list_invoices(
                    customer_id=customer_id, status=PaymentStatus.PENDING,
                )
                if not pending:
                    raise NotFoundError(
                        f"No unpaid invoices for customer {customer_id}",
                        error_code=ErrorCode.INVOICE_NOT_FOUND,
                        resource_type="invoice",
                    )
                pending.sort(key=lambda i: i.due_date)

                by_meter: Dict[str, Decimal] = defaultdict(lambda: ZERO)
                late_fees = ZERO
                for invoice in pending:
                    fee = self._late_fee(invoice, now)
                    self._settle(invoice, fee, method, now)
                    late_fees += fee
                    by_meter[invoice.meter_id] += invoice.consumption
                    await tx.save_invoice(invoice)

                for meter_id, consumption in by_meter.items():
                    meter = await self._require_meter(tx, meter_id)
                    adjust_unpaid_consumption(meter, -consumption, floor_at_zero=True)
                    await tx.save_meter(meter)

                total_paid = sum((i.total for i in pending), ZERO)
                fee_note = (
                    f" (termasuk denda keterlambatan {format_rupiah(late_fees)})"
                    if late_fees > 0 else ""
                )
                queue.notify(
                    customer_id,
                    "Pembayaran Berhasil",
                    f"Pembayaran {len(pending)} tagihan air sebesar "
                    f"{format_rupiah(total_paid)}{fee_note} telah berhasil",
                    NotificationCategory.TRANSACTION,
                    link="/riwayat-tagihan",
                    now=now,
                )

        logger.info(
            "Customer %s paid %d invoices: %s (late fees %s)",
            customer_id, len(pending), total_paid, late_fees,
            extra={"amount": str(total_paid)},
        )
        await queue.flush()
        return PaymentReceipt(
            customer_id=customer_id,
            invoices=pending,
            consumption=sum(by_meter.values(), ZERO),
            billed=sum((i.billed_total for i in pending), ZERO),
            late_fee=late_fees,
            amount_paid=total_paid,
            paid_at=now,
            payment_method=method,
        )

    async def reverse_status(
        self,
        invoice_id: str,
        new_status: Union[PaymentStatus, str],
        now: Optional[datetime] = None,
    ) -> Invoice:
        """Administrative status change, e.g. from a gateway callback.

        Leaving Settlement restores the invoice's consumption to the
        meter and drops the late fee; entering Settlement behaves like Pay.
        """
        now = self._now(now)
        if not isinstance(new_status, PaymentStatus):
            new_status = PaymentStatus(new_status)
        head = await self._require_invoice(self._store, invoice_id)
        queue = self._queue()

        async with self._locks.hold(("customer", head.customer_id)):
            async with self._store.transaction() as tx:
                invoice = await self._require_invoice(tx, invoice_id)
                was_settled = invoice.status is PaymentStatus.SETTLEMENT
                entering = new_status is PaymentStatus.SETTLEMENT and not was_settled
                leaving = was_settled and new_status is not PaymentStatus.SETTLEMENT

                if entering or leaving:
                    meter = await self._require_meter(tx, invoice.meter_id)
                    if entering:
                        method = invoice.payment_method or PaymentMethod.GATEWAY.value
                        self._settle(invoice, self._late_fee(invoice, now), method, now)
                        adjust_unpaid_consumption(meter, -invoice.consumption, floor_at_zero=True)
                    else:
                        adjust_unpaid_consumption(meter, invoice.consumption)
                        invoice.late_fee = ZERO
                        invoice.total = invoice.billed_total
                        invoice.paid_at = None
                        invoice.status = new_status
                    await tx.save_meter(meter)
                else:
                    invoice.status = new_status
                invoice.updated_at = now
                await tx.save_invoice(invoice)

                if entering:
                    title = "Pembayaran Berhasil"
                    body = (f"Pembayaran tagihan air periode {invoice.period} sebesar "
                            f"{format_rupiah(invoice.total)} telah berhasil")
                else:
                    title = "Status Pembayaran Diubah"
                    body = (f"Status pembayaran tagihan air periode {invoice.period} "
                            f"telah diubah menjadi {new_status.value}")
                queue.notify(
                    invoice.customer_id, title, body, NotificationCategory.TRANSACTION,
                    link="/riwayat-tagihan" if entering else "/pembayaran", now=now,
                )

        logger.info(
            "Invoice %s status %s -> %s",
            invoice_id, head.status.value, new_status.value,
            extra={"invoice_id": invoice_id},
        )
        await queue.flush()
        return invoice

    # ── Overdue sweep ─────────────────────────────────────────────────

    @log_performance(threshold_ms=30000)
    async def sweep_overdue(self, now: Optional[datetime] = None) -> BatchSummary:
        """Flag Pending invoices past their due date and warn each customer once."""
        now = self._now(now)
        candidates = await self._store.list_invoices(
            status=PaymentStatus.PENDING, overdue=False, due_before=now,
        )

        async def flag(invoice: Invoice) -> BatchItemResult:
            queue = self._queue()
            async with self._locks.hold(("customer", invoice.customer_id)):
                async with self._store.transaction() as tx:
                    current = await tx.get_invoice(invoice.invoice_id)
                    if (
                        current is None
                        or current.status is not PaymentStatus.PENDING
                        or current.overdue
                    ):
                        return BatchItemResult(invoice.invoice_id, BatchOutcome.SKIPPED)
                    current.overdue = True
                    current.updated_at = now
                    await tx.save_invoice(current)
                    queue.notify(
                        current.customer_id,
                        "Tagihan Terlambat",
                        f"Tagihan air periode {current.period} sebesar "
                        f"{format_rupiah(current.total)} telah melewati jatuh tempo. "
                        "Segera lakukan pembayaran untuk menghindari denda.",
                        NotificationCategory.WARNING,
                        link="/pembayaran",
                        now=now,
                    )
            await queue.flush()
            return BatchItemResult(
                invoice.invoice_id, BatchOutcome.SUCCESS, invoice_id=invoice.invoice_id,
            )

        summary = await self._run_batch(
            "sweep_overdue", None, [(i.invoice_id, i) for i in candidates], flag,
        )
        logger.info(
            "Overdue sweep: %d flagged, %d failed, %d skipped",
            len(summary.success), len(summary.failed), len(summary.skipped),
        )
        return summary

    # ── Administration and queries ────────────────────────────────────

    async def delete_invoice(self, invoice_id: str) -> Invoice:
        """Remove an invoice. The meter's unpaid counter is left as is."""
        async with self._store.transaction() as tx:
            invoice = await self._require_invoice(tx, invoice_id)
            await tx.delete_invoice(invoice_id)
        logger.info("Deleted invoice %s (%s, %s)", invoice_id, invoice.meter_id, invoice.period,
                    extra={"invoice_id": invoice_id})
        return invoice

    async def get_invoice(self, invoice_id: str, principal_id: Optional[str] = None) -> Invoice:
        invoice = await self._require_invoice(self._store, invoice_id)
        self._ensure_owner(invoice, principal_id)
        return invoice

    async def list_invoices(
        self,
        customer_id: Optional[str] = None,
        meter_id: Optional[str] = None,
        period: Optional[str] = None,
        status: Optional[PaymentStatus] = None,
        overdue: Optional[bool] = None,
    ) -> List[Invoice]:
        """Invoices matching every given filter, newest first."""
        if period:
            parse_period(period)
        return await self._store.list_invoices(
            customer_id=customer_id, meter_id=meter_id, period=period,
            status=status, overdue=overdue,
        )

    async def unpaid_summary(self, customer_id: str, now: Optional[datetime] = None) -> UnpaidSummary:
        now = self._now(now)
        pending = await self._store.list_invoices(
            customer_id=customer_id, status=PaymentStatus.PENDING,
        )
        summary = UnpaidSummary(customer_id=customer_id)
        for invoice in sorted(pending, key=lambda i: i.due_date):
            fee = self._late_fee(invoice, now)
            summary.lines.append(UnpaidLine(
                invoice=invoice,
                days_late=max(0, days_between(invoice.due_date, now)),
                late_fee=fee,
                total_with_fee=invoice.total + fee,
            ))
        return summary

    async def monthly_report(self, period: str) -> MonthlyReport:
        parse_period(period)
        report = MonthlyReport(period=period)
        for invoice in await self._store.list_invoices(period=period):
            report.invoice_count += 1
            report.total_consumption += invoice.consumption
            report.total_billed += invoice.total
            report.total_late_fee += invoice.late_fee
            if invoice.status.is_paid:
                report.paid_count += 1
                report.total_paid += invoice.total
            else:
                report.unpaid_count += 1
                report.total_unpaid += invoice.total
        return report

    # ── Hosted checkout ───────────────────────────────────────────────

    def _line_items(self, invoice: Invoice, late_fee: Decimal, suffix: str) -> List[LineItem]:
        items = [
            LineItem(f"billing-{invoice.invoice_id}", f"Biaya Air - {suffix}", invoice.usage_cost),
            LineItem(f"beban-{invoice.invoice_id}", f"Biaya Beban - {suffix}", invoice.base_fee),
        ]
        if late_fee > 0:
            items.append(LineItem(f"denda-{invoice.invoice_id}", f"Denda - {suffix}", late_fee))
        return items

    def _callbacks(self) -> Dict[str, str]:
        base = self._config.frontend_url.rstrip("/")
        return {
            "finish_url": f"{base}/payment/finish",
            "error_url": f"{base}/payment/error",
            "pending_url": f"{base}/payment/pending",
        }

    async def create_checkout(
        self,
        invoice_id: str,
        principal_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CheckoutSession:
        """Open a hosted checkout for one invoice. Invoice status is unchanged."""
        now = self._now(now)
        invoice = await self._require_invoice(self._store, invoice_id)
        self._ensure_owner(invoice, principal_id)
        self._ensure_payable(invoice)
        customer = await self._store.get_customer(invoice.customer_id)

        late_fee = self._late_fee(invoice, now)
        request = CheckoutRequest(
            order_id=single_order_id(invoice.invoice_id),
            items=self._line_items(invoice, late_fee, f"Periode {invoice.period}"),
            customer_name=customer.full_name if customer else "",
            customer_email=customer.email if customer else "",
            customer_phone=customer.phone if customer else "",
            invoice_ids=[invoice.invoice_id],
            **self._callbacks(),
        )
        session = await self._gateway.create_checkout(request)
        logger.info("Checkout %s opened for %s", session.order_id, session.gross_amount,
                    extra={"invoice_id": invoice_id, "amount": str(session.gross_amount)})
        return session

    async def create_checkout_all(
        self,
        customer_id: str,
        principal_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CheckoutSession:
        """Open one hosted checkout covering every Pending invoice of a customer."""
        if principal_id is not None and principal_id != customer_id:
            raise ForbiddenError(f"{principal_id} cannot pay invoices of {customer_id}")
        now = self._now(now)
        pending = await self._store.list_invoices(
            customer_id=customer_id, status=PaymentStatus.PENDING,
        )
        if not pending:
            raise NotFoundError(
                f"No unpaid invoices for customer {customer_id}",
                error_code=ErrorCode.INVOICE_NOT_FOUND,
                resource_type="invoice",
            )
        customer = await self._store.get_customer(customer_id)
        if customer is None:
            raise NotFoundError(
                f"Customer not found: {customer_id}",
                resource_type="customer",
                resource_id=customer_id,
            )

        items: List[LineItem] = []
        for invoice in sorted(pending, key=lambda i: i.due_date):
            items.extend(self._line_items(invoice, self._late_fee(invoice, now), invoice.period))
        request = CheckoutRequest(
            order_id=multi_order_id(customer_id, now),
            items=items,
            customer_name=customer.full_name,
            customer_email=customer.email,
            customer_phone=customer.phone,
            invoice_ids=[i.invoice_id for i in pending],
            **self._callbacks(),
        )
        session = await self._gateway.create_checkout(request)
        logger.info("Checkout %s opened for %d invoices, %s",
                    session.order_id, len(pending), session.gross_amount,
                    extra={"amount": str(session.gross_amount)})
        return session
