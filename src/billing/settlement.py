"""Usage Billing & Settlement — Pay-As-You-Go Settlement.

Reconciles metered usage on a wallet-funded water plan against the
consumer's wallet whenever the plan's billing cadence rolls over.

Usage is recorded first, in its own commit, so a failed settlement
never loses it. Settlement then moves money in one unit of work over
the subscription, the consumer wallet, the plan's income counters and
the owner wallet. When funds fall short, the affordable whole units are
billed, the wallet is emptied and the rest carries forward. The
sub-unit residue is held on the subscription as ``prepaid_remainder``
and spent first next time; every change to it is written to the ledger
as a reserve or release entry.

Subscriptions are written compare-and-swap on their version. The
settlement transaction re-checks the cadence against the row it read,
so when several workers cross the same boundary only one settles the
window and the losers re-read and report NOT_DUE.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from src.billing.cadence import is_due
from src.billing.config import DEFAULT_BILLING_CONFIG, BillingConfig
from src.billing.locks import KeyedLock
from src.errors import (
    AlreadyExistsError,
    ConcurrentUpdateError,
    ErrorCode,
    ForbiddenError,
    NotFoundError,
    SubscriptionInactiveError,
    ValidationError,
)
from src.ledger.accounts import credit_tokens, credit_wallet, debit_wallet
from src.ledger.models import (
    LedgerTransaction,
    Subscription,
    TransactionCategory,
    UsageLedgerEntry,
    Wallet,
    WaterCreditPlan,
    new_id,
)
from src.ledger.money import ZERO, Number, floor_units, format_rupiah, quantize_money, to_decimal
from src.logging_config import log_performance
from src.notifications import NotificationCategory, NotificationCenter, NotificationQueue

logger = logging.getLogger(__name__)


class SettlementKind(Enum):
    NOT_DUE = "not_due"
    NOTHING_TO_BILL = "nothing_to_bill"
    SETTLED = "settled"
    PARTIAL = "partial"
    UNFUNDED = "unfunded"


@dataclass
class SettlementOutcome:
    """Result of IncrementUsage. Insufficient funds is an outcome, not an error."""

    kind: SettlementKind
    subscription: Subscription
    wallet: Optional[Wallet] = None
    usage_entry: Optional[UsageLedgerEntry] = None
    cost_per_unit: Decimal = ZERO
    total_cost: Decimal = ZERO
    paid_units: Decimal = ZERO
    paid_amount: Decimal = ZERO
    remaining_units: Decimal = ZERO
    remaining_cost: Decimal = ZERO
    token_reward: Decimal = ZERO
    transaction: Optional[LedgerTransaction] = None
    reserve_transaction: Optional[LedgerTransaction] = None

    @property
    def settled(self) -> bool:
        return self.kind in (SettlementKind.SETTLED, SettlementKind.PARTIAL)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "subscription_id": self.subscription.subscription_id,
            "used_in_window": str(self.subscription.used_in_window),
            "prepaid_remainder": str(self.subscription.prepaid_remainder),
            "wallet_balance": str(self.wallet.balance) if self.wallet else None,
            "cost_per_unit": str(self.cost_per_unit),
            "total_cost": str(self.total_cost),
            "paid_units": str(self.paid_units),
            "paid_amount": str(self.paid_amount),
            "remaining_units": str(self.remaining_units),
            "remaining_cost": str(self.remaining_cost),
            "token_reward": str(self.token_reward),
            "transaction_id": self.transaction.transaction_id if self.transaction else None,
            "reserve_transaction_id": (
                self.reserve_transaction.transaction_id if self.reserve_transaction else None
            ),
        }


def reserve_entry(
    subscription: Subscription,
    payer_name: str,
    delta: Decimal,
    now: datetime,
) -> LedgerTransaction:
    """Ledger record for a change of ``delta`` in the subscription reserve.

    A positive delta moved wallet money into the reserve; a negative
    one released reserve money, either toward a payment or back to the
    wallet.
    """
    if delta > ZERO:
        payer, payee, category = (
            subscription.customer_id, subscription.subscription_id,
            TransactionCategory.PREPAID_RESERVE,
        )
    else:
        payer, payee, category = (
            subscription.subscription_id, subscription.customer_id,
            TransactionCategory.PREPAID_RELEASE,
        )
    return LedgerTransaction(
        transaction_id=new_id(),
        payer_id=payer,
        payee_id=payee,
        amount=abs(delta),
        category=category,
        payer_name=payer_name,
        reference=subscription.subscription_id,
        created_at=now,
    )


class PayAsYouGoSettlement:
    """Usage metering and cadence-driven settlement for water-credit plans.

    Within one process, work on a subscription is serialized by a keyed
    lock. Across processes the subscription version is the commit guard:
    a write from a stale read fails with ConcurrentUpdateError and the
    operation is re-run against fresh rows, up to
    ``settlement_retry_attempts`` times.
    """

    def __init__(
        self,
        store,
        notifications: Optional[NotificationCenter] = None,
        config: Optional[BillingConfig] = None,
    ) -> None:
        self._store = store
        self._notifications = notifications
        self._config = config or DEFAULT_BILLING_CONFIG
        self._locks = KeyedLock()

    def _queue(self) -> NotificationQueue:
        return NotificationQueue(self._notifications)

    async def _retrying(
        self,
        operation: Callable[..., Awaitable[Any]],
        *args: Any,
        on_retry: Optional[Callable[[], None]] = None,
    ) -> Any:
        attempts = max(1, self._config.settlement_retry_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return await operation(*args)
            except ConcurrentUpdateError as exc:
                if attempt == attempts:
                    raise
                logger.debug(
                    "%s lost a version race (attempt %d/%d): %s",
                    operation.__name__, attempt, attempts, exc.message,
                )
                if on_retry is not None:
                    on_retry()

    # ── lookups ──

    async def _require_subscription(self, tx, subscription_id: str) -> Subscription:
        subscription = await tx.get_subscription(subscription_id)
        if subscription is None:
            raise NotFoundError(
                f"Subscription not found: {subscription_id}",
                error_code=ErrorCode.SUBSCRIPTION_NOT_FOUND,
                resource_type="subscription",
                resource_id=subscription_id,
            )
        return subscription

    async def _require_plan(self, tx, plan_id: str) -> WaterCreditPlan:
        plan = await tx.get_plan(plan_id)
        if plan is None:
            raise NotFoundError(
                f"Water credit plan not found: {plan_id}",
                resource_type="plan",
                resource_id=plan_id,
            )
        return plan

    async def _require_wallet(self, tx, owner_id: str) -> Wallet:
        wallet = await tx.get_wallet(owner_id)
        if wallet is None:
            raise NotFoundError(
                f"Wallet not found: {owner_id}",
                error_code=ErrorCode.WALLET_NOT_FOUND,
                resource_type="wallet",
                resource_id=owner_id,
            )
        return wallet

    async def _require_customer(self, tx, customer_id: str):
        customer = await tx.get_customer(customer_id)
        if customer is None:
            raise NotFoundError(
                f"Customer not found: {customer_id}",
                resource_type="customer",
                resource_id=customer_id,
            )
        return customer

    # ── IncrementUsage ────────────────────────────────────────────────

    @log_performance(threshold_ms=2000)
    async def increment_usage(
        self,
        subscription_id: str,
        delta: Number,
        principal_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> SettlementOutcome:
        """Record ``delta`` units of usage and settle if the cadence is due.

        Raises:
            NotFoundError: subscription, plan, consumer wallet or customer missing.
            ForbiddenError: ``principal_id`` does not own the subscription.
            SubscriptionInactiveError: the subscription is deactivated.
            ValidationError: ``delta`` is negative.
            ConcurrentUpdateError: retries were exhausted under contention.
        """
        quantity = to_decimal(delta)
        if quantity < ZERO:
            raise ValidationError(
                f"Usage delta must be non-negative, got {quantity}",
                error_code=ErrorCode.INVALID_QUANTITY,
                field="delta",
            )
        now = now or datetime.now(timezone.utc)

        async with self._locks.hold(("subscription", subscription_id)):
            subscription, plan, entry = await self._retrying(
                self._record_usage, subscription_id, quantity, principal_id, now,
            )

            if not is_due(subscription.last_settled_at, plan.cadence, now, self._config.tzinfo):
                return SettlementOutcome(
                    SettlementKind.NOT_DUE, subscription, usage_entry=entry,
                )
            if subscription.used_in_window == ZERO:
                return SettlementOutcome(
                    SettlementKind.NOTHING_TO_BILL, subscription, usage_entry=entry,
                )

            queue = self._queue()
            try:
                outcome = await self._retrying(
                    self._settle, subscription_id, now, queue, on_retry=queue.discard,
                )
            except Exception:
                logger.exception(
                    "Settlement aborted for subscription %s; usage was kept",
                    subscription_id,
                    extra={"subscription_id": subscription_id},
                )
                raise
            outcome.usage_entry = entry

        await queue.flush()
        return outcome

    async def _record_usage(self, subscription_id, quantity, principal_id, now):
        async with self._store.transaction() as tx:
            subscription = await self._require_subscription(tx, subscription_id)
            if principal_id is not None and subscription.customer_id != principal_id:
                raise ForbiddenError(
                    f"Subscription {subscription_id} does not belong to {principal_id}"
                )
            plan = await self._require_plan(tx, subscription.plan_id)
            await self._require_wallet(tx, subscription.customer_id)
            await self._require_customer(tx, subscription.customer_id)
            if not subscription.active:
                raise SubscriptionInactiveError(f"Subscription {subscription_id} is not active")

            subscription.total_used += quantity
            subscription.used_in_window += quantity
            subscription.updated_at = now
            await tx.save_subscription(subscription)

            entry = None
            if quantity != ZERO:
                entry = UsageLedgerEntry(
                    entry_id=new_id(),
                    customer_id=subscription.customer_id,
                    quantity=quantity,
                    subscription_id=subscription_id,
                    plan_id=plan.plan_id,
                    recorded_at=now,
                )
                await tx.append_usage(entry)
        return subscription, plan, entry

    async def _settle(self, subscription_id: str, now: datetime, queue: NotificationQueue) -> SettlementOutcome:
        tz = self._config.tzinfo
        async with self._store.transaction() as tx:
            subscription = await self._require_subscription(tx, subscription_id)
            plan = await self._require_plan(tx, subscription.plan_id)

            # Another worker may have settled this window since usage was recorded.
            if not is_due(subscription.last_settled_at, plan.cadence, now, tz):
                return SettlementOutcome(SettlementKind.NOT_DUE, subscription)
            used = subscription.used_in_window
            if used == ZERO:
                return SettlementOutcome(SettlementKind.NOTHING_TO_BILL, subscription)

            wallet = await self._require_wallet(tx, subscription.customer_id)
            customer = await self._require_customer(tx, subscription.customer_id)

            cost_per_unit = plan.cost_per_unit
            total_cost = quantize_money(used * cost_per_unit)
            reserve_before = subscription.prepaid_remainder
            funds = wallet.balance + reserve_before

            token_reward = ZERO
            if (
                plan.reward_amount > ZERO
                and used < plan.reward_threshold
                and is_due(subscription.last_settled_at, plan.reward_cadence, now, tz)
            ):
                token_reward = plan.reward_amount

            outcome = SettlementOutcome(
                SettlementKind.SETTLED,
                subscription,
                wallet=wallet,
                cost_per_unit=cost_per_unit,
                total_cost=total_cost,
            )

            if funds >= total_cost:
                from_reserve = min(reserve_before, total_cost)
                debit_wallet(wallet, total_cost - from_reserve)
                subscription.prepaid_remainder -= from_reserve
                paid_units, paid_amount = used, total_cost
                subscription.used_in_window = ZERO
                category = TransactionCategory.WATER_USAGE
            else:
                paid_units = floor_units(funds / cost_per_unit)
                remaining_units = used - paid_units
                outcome.remaining_units = remaining_units
                outcome.remaining_cost = quantize_money(remaining_units * cost_per_unit)
                if paid_units <= ZERO:
                    outcome.kind = SettlementKind.UNFUNDED
                    queue.notify_once(
                        subscription.customer_id,
                        "Peringatan Saldo",
                        f"Saldo Anda tidak mencukupi untuk membayar tagihan air "
                        f"{used.normalize():f} liter ({format_rupiah(total_cost)}). "
                        "Silakan isi ulang saldo Anda.",
                        NotificationCategory.WARNING,
                        link=f"/billing/{subscription.customer_id}",
                        now=now,
                    )
                    logger.warning(
                        "Subscription %s unfunded: %s due, %s available",
                        subscription_id, total_cost, funds,
                        extra={"subscription_id": subscription_id, "amount": str(total_cost)},
                    )
                    return outcome

                paid_amount = quantize_money(paid_units * cost_per_unit)
                debit_wallet(wallet, wallet.balance)
                subscription.prepaid_remainder = funds - paid_amount
                subscription.used_in_window = remaining_units
                outcome.kind = SettlementKind.PARTIAL
                category = TransactionCategory.PARTIAL_WATER_USAGE

            if token_reward > ZERO:
                credit_tokens(wallet, token_reward)
                outcome.token_reward = token_reward

            owner_wallet = await tx.get_wallet(plan.owner_id) or Wallet(owner_id=plan.owner_id)
            credit_wallet(owner_wallet, paid_amount)
            plan.income += paid_amount
            plan.total_income += paid_amount

            subscription.last_settled_at = now
            subscription.updated_at = now

            transaction = LedgerTransaction(
                transaction_id=new_id(),
                payer_id=subscription.customer_id,
                payee_id=plan.owner_id,
                amount=paid_amount,
                category=category,
                payer_name=customer.full_name,
                reference=subscription_id,
                created_at=now,
            )

            # Version check first: a lost race aborts before anything else is written.
            await tx.save_subscription(subscription)
            await tx.save_wallet(wallet)
            await tx.save_wallet(owner_wallet)
            await tx.save_plan(plan)
            await tx.append_transaction(transaction)

            reserve_delta = subscription.prepaid_remainder - reserve_before
            if reserve_delta != ZERO:
                outcome.reserve_transaction = reserve_entry(
                    subscription, customer.full_name, reserve_delta, now,
                )
                await tx.append_transaction(outcome.reserve_transaction)

            outcome.paid_units = paid_units
            outcome.paid_amount = paid_amount
            outcome.transaction = transaction

            if outcome.kind is SettlementKind.PARTIAL:
                queue.notify_once(
                    subscription.customer_id,
                    "Peringatan Saldo",
                    f"Tagihan air Anda sebagian telah dibayar untuk {paid_units.normalize():f} liter. "
                    f"Sisa tagihan untuk {outcome.remaining_units.normalize():f} liter "
                    f"({format_rupiah(outcome.remaining_cost)}) tidak dapat diproses "
                    "karena saldo tidak mencukupi",
                    NotificationCategory.WARNING,
                    link=f"/billing/{subscription.customer_id}",
                    now=now,
                )
            else:
                reward_note = (
                    f". Anda mendapatkan reward token sebesar {token_reward.normalize():f} "
                    "karena penggunaan air yang efisien!"
                    if token_reward > ZERO else ""
                )
                queue.notify_once(
                    subscription.customer_id,
                    "Pembayaran Tagihan Air",
                    f"Tagihan air Anda untuk periode {plan.cadence.value} telah dibayar. "
                    f"Total pembayaran: {format_rupiah(paid_amount)}{reward_note}",
                    NotificationCategory.TRANSACTION,
                    link=f"/billing/{subscription.customer_id}",
                    now=now,
                )

        logger.info(
            "Subscription %s %s: %s units for %s (remaining %s units)",
            subscription_id, outcome.kind.value, paid_units, paid_amount,
            outcome.remaining_units,
            extra={"subscription_id": subscription_id, "amount": str(paid_amount)},
        )
        return outcome

    # ── Pipe closure ──────────────────────────────────────────────────

    async def is_balance_zero(self, subscription_id: str, now: Optional[datetime] = None) -> bool:
        """Close the pipe when the consumer wallet is empty. Idempotent.

        Only the wallet counts. A ``prepaid_remainder`` is always worth
        less than one unit, so it cannot pay for more water and does not
        keep the pipe open; it stays reserved until the next settlement
        or is refunded on unsubscribe.

        Returns True when the balance is exactly zero (pipe closed).
        """
        now = now or datetime.now(timezone.utc)
        queue = self._queue()
        async with self._locks.hold(("subscription", subscription_id)):
            closed = await self._retrying(
                self._close_pipe, subscription_id, now, queue, on_retry=queue.discard,
            )
        await queue.flush()
        return closed

    async def _close_pipe(self, subscription_id: str, now: datetime, queue: NotificationQueue) -> bool:
        async with self._store.transaction() as tx:
            subscription = await self._require_subscription(tx, subscription_id)
            wallet = await self._require_wallet(tx, subscription.customer_id)
            if wallet.balance != ZERO:
                return False
            if not subscription.pipe_closed:
                subscription.pipe_closed = True
                subscription.updated_at = now
                await tx.save_subscription(subscription)
                logger.info("Pipe closed for subscription %s", subscription_id,
                            extra={"subscription_id": subscription_id})
            queue.notify_once(
                subscription.customer_id,
                "Pipa Ditutup",
                "Pipa air Anda telah ditutup karena saldo nol.",
                NotificationCategory.INFORMATION,
                now=now,
            )
        return True

    # ── Subscription lifecycle ────────────────────────────────────────

    async def subscribe(
        self,
        customer_id: str,
        plan_id: str,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """Subscribe a customer to a plan, or reactivate a lapsed subscription.

        Raises:
            NotFoundError: plan or customer missing.
            AlreadyExistsError: an active subscription already exists.
        """
        now = now or datetime.now(timezone.utc)
        queue = self._queue()
        async with self._locks.hold(("enrollment", customer_id, plan_id)):
            async with self._store.transaction() as tx:
                plan = await self._require_plan(tx, plan_id)
                await self._require_customer(tx, customer_id)
                if await tx.get_wallet(customer_id) is None:
                    await tx.save_wallet(Wallet(owner_id=customer_id, updated_at=now))

                subscription = await tx.find_subscription(customer_id, plan_id)
                if subscription is not None:
                    if subscription.active:
                        raise AlreadyExistsError(
                            f"Customer {customer_id} is already subscribed to plan {plan_id}"
                        )
                    subscription.active = True
                    subscription.updated_at = now
                    await tx.save_subscription(subscription)
                    queue.notify(
                        customer_id,
                        "Langganan Diaktifkan Kembali",
                        "Anda telah berhasil mengaktifkan kembali langganan layanan air.",
                        NotificationCategory.INFORMATION,
                        now=now,
                    )
                else:
                    subscription = Subscription(
                        subscription_id=new_id(),
                        customer_id=customer_id,
                        plan_id=plan_id,
                        created_at=now,
                        updated_at=now,
                    )
                    await tx.insert_subscription(subscription)
                    plan.subscriber_count += 1
                    await tx.save_plan(plan)
                    queue.notify(
                        customer_id,
                        "Langganan Dibuat",
                        "Anda telah berhasil berlangganan layanan air.",
                        NotificationCategory.INFORMATION,
                        now=now,
                    )

        logger.info("Customer %s subscribed to plan %s", customer_id, plan_id,
                    extra={"subscription_id": subscription.subscription_id})
        await queue.flush()
        return subscription

    async def unsubscribe(
        self,
        customer_id: str,
        plan_id: str,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """Deactivate a subscription and refund its reserve to the wallet.

        The plan's subscriber count is kept.
        """
        now = now or datetime.now(timezone.utc)
        queue = self._queue()
        async with self._locks.hold(("enrollment", customer_id, plan_id)):
            subscription = await self._retrying(
                self._deactivate, customer_id, plan_id, now, queue, on_retry=queue.discard,
            )
        logger.info("Customer %s unsubscribed from plan %s", customer_id, plan_id,
                    extra={"subscription_id": subscription.subscription_id})
        await queue.flush()
        return subscription

    async def _deactivate(self, customer_id, plan_id, now, queue) -> Subscription:
        async with self._store.transaction() as tx:
            subscription = await tx.find_subscription(customer_id, plan_id)
            if subscription is None:
                raise NotFoundError(
                    f"No subscription for customer {customer_id} on plan {plan_id}",
                    error_code=ErrorCode.SUBSCRIPTION_NOT_FOUND,
                    resource_type="subscription",
                )
            refund = subscription.prepaid_remainder
            if refund > ZERO:
                wallet = await self._require_wallet(tx, customer_id)
                customer = await self._require_customer(tx, customer_id)
                credit_wallet(wallet, refund)
                wallet.updated_at = now
                subscription.prepaid_remainder = ZERO

            subscription.active = False
            subscription.updated_at = now
            await tx.save_subscription(subscription)

            if refund > ZERO:
                await tx.save_wallet(wallet)
                await tx.append_transaction(
                    reserve_entry(subscription, customer.full_name, -refund, now)
                )
            queue.notify(
                customer_id,
                "Berhenti Berlangganan",
                "Anda telah berhasil berhenti berlangganan dari layanan air.",
                NotificationCategory.INFORMATION,
                now=now,
            )
        return subscription
