"""Ledger — Authoritative balance and counter adjustments.

Every change to a meter's unpaid counter or a wallet balance goes
through this module. Telemetry ingestion, invoice payment and
settlement all share these functions, and the functions refuse to
drive a value negative unless the caller asks for the floor.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from src.errors import (
    ErrorCode,
    InvalidStateError,
    LedgerInvariantError,
    NotFoundError,
    ValidationError,
)
from src.ledger.models import (
    LedgerTransaction,
    MeterAccount,
    TransactionCategory,
    UsageLedgerEntry,
    Wallet,
    new_id,
)
from src.ledger.money import ZERO, Number, quantize_money, to_decimal

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_CONVERSION_RATE = Decimal("90")


# ── Meter counters ───────────────────────────────────────────────────


def adjust_unpaid_consumption(
    meter: MeterAccount,
    delta: Number,
    floor_at_zero: bool = False,
) -> Decimal:
    """Apply ``delta`` to the meter's unpaid counter and return the new value.

    Positive deltas come from telemetry and payment reversals, negative
    ones from payments. A result below zero raises LedgerInvariantError
    unless ``floor_at_zero`` is set, in which case it is clamped to 0.
    """
    change = to_decimal(delta)
    updated = meter.unpaid_consumption + change
    if updated < ZERO:
        if not floor_at_zero:
            raise LedgerInvariantError(
                f"Unpaid consumption for meter {meter.meter_id} would become {updated}",
                details={
                    "meter_id": meter.meter_id,
                    "unpaid_consumption": str(meter.unpaid_consumption),
                    "delta": str(change),
                },
            )
        logger.debug(
            "Unpaid consumption for meter %s floored at zero (was %s, delta %s)",
            meter.meter_id, meter.unpaid_consumption, change,
        )
        updated = ZERO
    meter.unpaid_consumption = updated
    return updated


def advance_lifetime_reading(meter: MeterAccount, delta: Number) -> Decimal:
    """Telemetry only moves the lifetime counter forward."""
    change = to_decimal(delta)
    if change < ZERO:
        raise ValidationError(
            f"Meter reading delta must be non-negative, got {change}",
            error_code=ErrorCode.INVALID_QUANTITY,
            field="delta",
        )
    meter.lifetime_reading += change
    return meter.lifetime_reading


# ── Wallets ──────────────────────────────────────────────────────────


def credit_wallet(wallet: Wallet, amount: Number) -> Decimal:
    value = to_decimal(amount)
    if value < ZERO:
        raise LedgerInvariantError(
            f"Cannot credit a negative amount {value} to wallet {wallet.owner_id}"
        )
    wallet.balance += value
    wallet.updated_at = datetime.now(timezone.utc)
    return wallet.balance


def debit_wallet(wallet: Wallet, amount: Number) -> Decimal:
    """Debit exactly ``amount``; overdrawing is a ledger invariant violation."""
    value = to_decimal(amount)
    if value < ZERO:
        raise LedgerInvariantError(
            f"Cannot debit a negative amount {value} from wallet {wallet.owner_id}"
        )
    if value > wallet.balance:
        raise LedgerInvariantError(
            f"Wallet {wallet.owner_id} balance {wallet.balance} cannot cover {value}",
            details={"owner_id": wallet.owner_id, "balance": str(wallet.balance), "amount": str(value)},
        )
    wallet.balance -= value
    wallet.updated_at = datetime.now(timezone.utc)
    return wallet.balance


def credit_tokens(wallet: Wallet, tokens: Number) -> Decimal:
    value = to_decimal(tokens)
    if value < ZERO:
        raise LedgerInvariantError(
            f"Cannot credit negative tokens {value} to wallet {wallet.owner_id}"
        )
    wallet.conservation_tokens += value
    wallet.updated_at = datetime.now(timezone.utc)
    return wallet.conservation_tokens


# ── Store-backed operations ──────────────────────────────────────────


async def ingest_meter_reading(
    store,
    meter_id: str,
    delta: Number,
    now: Optional[datetime] = None,
) -> MeterAccount:
    """Record metered consumption for a connection.

    Advances the lifetime reading and the unpaid counter by the same
    amount and appends a usage entry, all in one unit of work.
    """
    async with store.transaction() as tx:
        meter = await tx.get_meter(meter_id)
        if meter is None:
            raise NotFoundError(
                f"Meter not found: {meter_id}",
                error_code=ErrorCode.METER_NOT_FOUND,
                resource_type="meter",
                resource_id=meter_id,
            )
        change = to_decimal(delta)
        advance_lifetime_reading(meter, change)
        adjust_unpaid_consumption(meter, change)
        await tx.save_meter(meter)
        if change != ZERO:
            await tx.append_usage(UsageLedgerEntry(
                entry_id=new_id(),
                customer_id=meter.customer_id,
                quantity=change,
                meter_id=meter.meter_id,
                recorded_at=now or datetime.now(timezone.utc),
            ))

    logger.debug(
        "Meter %s reading +%s (lifetime %s, unpaid %s)",
        meter_id, change, meter.lifetime_reading, meter.unpaid_consumption,
        extra={"meter_id": meter_id},
    )
    return meter


async def convert_conservation_tokens(
    store,
    owner_id: str,
    tokens: Number,
    rate: Number = DEFAULT_TOKEN_CONVERSION_RATE,
    notifications=None,
    now: Optional[datetime] = None,
) -> Wallet:
    """Exchange conservation tokens for wallet balance at ``rate`` per token."""
    amount_tokens = to_decimal(tokens)
    if amount_tokens <= ZERO:
        raise ValidationError(
            "Token amount must be positive",
            error_code=ErrorCode.INVALID_QUANTITY,
            field="tokens",
        )
    cash = quantize_money(amount_tokens * to_decimal(rate))

    async with store.transaction() as tx:
        wallet = await tx.get_wallet(owner_id)
        if wallet is None:
            raise NotFoundError(
                f"Wallet not found: {owner_id}",
                error_code=ErrorCode.WALLET_NOT_FOUND,
                resource_type="wallet",
                resource_id=owner_id,
            )
        if wallet.conservation_tokens < amount_tokens:
            raise InvalidStateError(
                f"Insufficient conservation tokens: have {wallet.conservation_tokens}, "
                f"need {amount_tokens}"
            )
        wallet.conservation_tokens -= amount_tokens
        credit_wallet(wallet, cash)
        await tx.save_wallet(wallet)
        await tx.append_transaction(LedgerTransaction(
            transaction_id=new_id(),
            payer_id=owner_id,
            payee_id=owner_id,
            amount=cash,
            category=TransactionCategory.TOKEN_CONVERSION,
            reference=f"{amount_tokens} tokens",
            created_at=now or datetime.now(timezone.utc),
        ))

    logger.info(
        "Converted %s tokens to %s for %s", amount_tokens, cash, owner_id,
        extra={"amount": str(cash)},
    )
    if notifications is not None:
        await notifications.notify(
            owner_id,
            "Konversi Token",
            f"{amount_tokens} token berhasil dikonversi menjadi saldo sebesar {cash}.",
            category="Transaksi",
            now=now,
        )
    return wallet
