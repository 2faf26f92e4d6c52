"""Payment Gateway.

Order-id codec for webhook routing and the hosted-checkout client.
"""

from src.payments.orders import (
    OrderKind,
    OrderReference,
    multi_order_id,
    parse_order_id,
    single_order_id,
)
from src.payments.client import (
    CheckoutRequest,
    CheckoutSession,
    LineItem,
    PaymentGatewayClient,
    SnapGatewayClient,
)

__all__ = [
    # Orders
    "OrderKind",
    "OrderReference",
    "multi_order_id",
    "parse_order_id",
    "single_order_id",
    # Client
    "CheckoutRequest",
    "CheckoutSession",
    "LineItem",
    "PaymentGatewayClient",
    "SnapGatewayClient",
]
