"""Billing schema - customers, meters, invoices, plans, wallets, ledgers.

Revision ID: 001
Revises: None
Create Date: 2024-05-01
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MONEY = sa.Numeric(18, 2)
QUANTITY = sa.Numeric(18, 4)


def upgrade() -> None:
    # --- customers ---
    op.create_table(
        "customers",
        sa.Column("customer_id", sa.String(32), primary_key=True),
        sa.Column("full_name", sa.String(200), nullable=False, server_default=""),
        sa.Column("email", sa.String(200), nullable=False, server_default=""),
        sa.Column("phone", sa.String(40), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- tariff_tiers ---
    op.create_table(
        "tariff_tiers",
        sa.Column("tier_id", sa.String(32), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("price_below_threshold", MONEY, nullable=False),
        sa.Column("price_above_threshold", MONEY, nullable=False),
        sa.Column("base_fee", MONEY, nullable=True),
    )

    # --- meter_accounts ---
    op.create_table(
        "meter_accounts",
        sa.Column("meter_id", sa.String(32), primary_key=True),
        sa.Column("account_number", sa.String(50), nullable=False),
        sa.Column("customer_id", sa.String(32), sa.ForeignKey("customers.customer_id"), nullable=False),
        sa.Column("tariff_tier_id", sa.String(32), sa.ForeignKey("tariff_tiers.tier_id"), nullable=False),
        sa.Column("meter_number", sa.String(50), nullable=False, server_default=""),
        sa.Column("lifetime_reading", QUANTITY, nullable=False, server_default="0"),
        sa.Column("unpaid_consumption", QUANTITY, nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("next_due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("account_number"),
        sa.CheckConstraint("unpaid_consumption >= 0", name="ck_meter_unpaid_non_negative"),
    )
    op.create_index("ix_meter_accounts_customer_id", "meter_accounts", ["customer_id"])
    op.create_index("ix_meter_accounts_active", "meter_accounts", ["active"])

    # --- invoices ---
    op.create_table(
        "invoices",
        sa.Column("invoice_id", sa.String(32), primary_key=True),
        sa.Column("customer_id", sa.String(32), nullable=False),
        sa.Column("meter_id", sa.String(32), sa.ForeignKey("meter_accounts.meter_id"), nullable=False),
        sa.Column("period", sa.String(7), nullable=False),
        sa.Column("previous_reading", QUANTITY, nullable=False),
        sa.Column("current_reading", QUANTITY, nullable=False),
        sa.Column("consumption", QUANTITY, nullable=False),
        sa.Column("usage_cost", MONEY, nullable=False),
        sa.Column("base_fee", MONEY, nullable=False),
        sa.Column("late_fee", MONEY, nullable=False, server_default="0"),
        sa.Column("total", MONEY, nullable=False),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="Pending"),
        sa.Column("overdue", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_method", sa.String(50), nullable=True),
        sa.Column("notes", sa.Text(), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("meter_id", "period", name="uq_invoice_meter_period"),
    )
    op.create_index("ix_invoices_customer_id", "invoices", ["customer_id"])
    op.create_index("ix_invoices_status_due", "invoices", ["status", "due_date"])
    op.create_index("ix_invoices_customer_status", "invoices", ["customer_id", "status"])

    # --- water_credit_plans ---
    op.create_table(
        "water_credit_plans",
        sa.Column("plan_id", sa.String(32), primary_key=True),
        sa.Column("owner_id", sa.String(32), nullable=False),
        sa.Column("name", sa.String(200), nullable=False, server_default=""),
        sa.Column("price", MONEY, nullable=False),
        sa.Column("unit_size", QUANTITY, nullable=False),
        sa.Column("cadence", sa.String(20), nullable=False),
        sa.Column("reward_cadence", sa.String(20), nullable=False),
        sa.Column("reward_threshold", QUANTITY, nullable=False, server_default="0"),
        sa.Column("reward_amount", QUANTITY, nullable=False, server_default="0"),
        sa.Column("income", MONEY, nullable=False, server_default="0"),
        sa.Column("total_income", MONEY, nullable=False, server_default="0"),
        sa.Column("subscriber_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_water_credit_plans_owner_id", "water_credit_plans", ["owner_id"])

    # --- subscriptions ---
    op.create_table(
        "subscriptions",
        sa.Column("subscription_id", sa.String(32), primary_key=True),
        sa.Column("customer_id", sa.String(32), nullable=False),
        sa.Column("plan_id", sa.String(32), sa.ForeignKey("water_credit_plans.plan_id"), nullable=False),
        sa.Column("total_used", QUANTITY, nullable=False, server_default="0"),
        sa.Column("used_in_window", QUANTITY, nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("pipe_closed", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("last_settled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("prepaid_remainder", MONEY, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("customer_id", "plan_id", name="uq_subscription_customer_plan"),
    )

    # --- wallets ---
    op.create_table(
        "wallets",
        sa.Column("owner_id", sa.String(32), primary_key=True),
        sa.Column("balance", MONEY, nullable=False, server_default="0"),
        sa.Column("conservation_tokens", QUANTITY, nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
    )

    # --- usage_ledger_entries ---
    op.create_table(
        "usage_ledger_entries",
        sa.Column("entry_id", sa.String(32), primary_key=True),
        sa.Column("customer_id", sa.String(32), nullable=False),
        sa.Column("subscription_id", sa.String(32), nullable=True),
        sa.Column("plan_id", sa.String(32), nullable=True),
        sa.Column("meter_id", sa.String(32), nullable=True),
        sa.Column("quantity", QUANTITY, nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_usage_ledger_entries_customer_id", "usage_ledger_entries", ["customer_id"])
    op.create_index("ix_usage_ledger_entries_subscription_id", "usage_ledger_entries", ["subscription_id"])
    op.create_index("ix_usage_ledger_entries_meter_id", "usage_ledger_entries", ["meter_id"])
    op.create_index("ix_usage_ledger_entries_recorded_at", "usage_ledger_entries", ["recorded_at"])

    # --- ledger_transactions ---
    op.create_table(
        "ledger_transactions",
        sa.Column("transaction_id", sa.String(32), primary_key=True),
        sa.Column("payer_id", sa.String(32), nullable=False),
        sa.Column("payee_id", sa.String(32), nullable=False),
        sa.Column("payer_name", sa.String(200), nullable=False, server_default=""),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("category", sa.String(30), nullable=False),
        sa.Column("reference", sa.String(200), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_ledger_transactions_payer_id", "ledger_transactions", ["payer_id"])
    op.create_index("ix_ledger_transactions_payee_id", "ledger_transactions", ["payee_id"])
    op.create_index("ix_ledger_transactions_created_at", "ledger_transactions", ["created_at"])


def downgrade() -> None:
    op.drop_table("ledger_transactions")
    op.drop_table("usage_ledger_entries")
    op.drop_table("wallets")
    op.drop_table("subscriptions")
    op.drop_table("water_credit_plans")
    op.drop_table("invoices")
    op.drop_table("meter_accounts")
    op.drop_table("tariff_tiers")
    op.drop_table("customers")
