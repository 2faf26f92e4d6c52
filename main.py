"""CLI entry point for scheduled billing jobs.

    python main.py generate --period 2024-05
    python main.py sweep-overdue
"""

import argparse
import asyncio
import json
import sys

from src.billing import BillingConfig, InvoiceLifecycle
from src.db.engine import dispose_engines, get_async_session_factory
from src.ledger.sql_store import SqlBillingStore
from src.logging_config import (
    LoggingConfig,
    PerformanceTimer,
    RequestContext,
    configure_logging,
)
from src.notifications import NotificationCenter, SqlNotificationStore
from src.payments import SnapGatewayClient
from src.settings import get_settings


def build_lifecycle(settings) -> InvoiceLifecycle:
    session_factory = get_async_session_factory()
    notifications = NotificationCenter(
        store=SqlNotificationStore(session_factory),
        timezone=settings.billing_timezone,
    )
    return InvoiceLifecycle(
        SqlBillingStore(session_factory),
        notifications=notifications,
        gateway=SnapGatewayClient.from_settings(settings),
        config=BillingConfig.from_settings(settings),
    )


async def run_job(args) -> dict:
    settings = get_settings()
    lifecycle = build_lifecycle(settings)
    try:
        with RequestContext(job=args.command):
            with PerformanceTimer(args.command):
                if args.command == "generate":
                    summary = await lifecycle.generate_for_all_active_meters(period=args.period)
                else:
                    summary = await lifecycle.sweep_overdue()
        return summary.to_dict()
    finally:
        await dispose_engines()


def main():
    parser = argparse.ArgumentParser(
        description="Tirta - water billing jobs"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    generate = subparsers.add_parser(
        "generate", help="Generate invoices for every active meter"
    )
    generate.add_argument(
        "--period", default=None,
        help="Billing period as YYYY-MM (default: current period)"
    )
    subparsers.add_parser(
        "sweep-overdue", help="Flag unpaid invoices past their due date"
    )
    args = parser.parse_args()

    configure_logging(LoggingConfig.from_settings(get_settings()))

    result = asyncio.run(run_job(args))
    print(json.dumps(result, indent=2))

    # Non-zero exit lets the scheduler surface partial failures.
    return 1 if result.get("failed") else 0


if __name__ == "__main__":
    sys.exit(main())
