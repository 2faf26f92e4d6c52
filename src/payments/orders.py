"""Payment order identifiers.

Webhook callbacks carry only the order id, so the id must say which
invoice (or which customer's batch of invoices) it settles:

    BILLING-<invoiceId>
    BILLING-MULTI-<customerId>-<epochMillis>
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from src.errors import ErrorCode, ValidationError

ORDER_PREFIX = "BILLING-"
MULTI_PREFIX = "BILLING-MULTI-"


class OrderKind(Enum):
    SINGLE = "single"
    MULTI = "multi"


@dataclass(frozen=True)
class OrderReference:
    """Parsed form of an order id."""
    kind: OrderKind
    invoice_id: Optional[str] = None
    customer_id: Optional[str] = None
    timestamp_ms: Optional[int] = None

    @property
    def created_at(self) -> Optional[datetime]:
        if self.timestamp_ms is None:
            return None
        return datetime.fromtimestamp(self.timestamp_ms / 1000, tz=timezone.utc)


def single_order_id(invoice_id: str) -> str:
    return f"{ORDER_PREFIX}{invoice_id}"


def multi_order_id(customer_id: str, when: Optional[datetime] = None) -> str:
    when = when or datetime.now(timezone.utc)
    return f"{MULTI_PREFIX}{customer_id}-{int(when.timestamp() * 1000)}"


def parse_order_id(order_id: str) -> OrderReference:
    """Decode an order id built by ``single_order_id`` or ``multi_order_id``."""
    if order_id.startswith(MULTI_PREFIX):
        rest = order_id[len(MULTI_PREFIX):]
        # Customer ids may contain dashes; the timestamp is the last segment.
        customer_id, sep, stamp = rest.rpartition("-")
        if not sep or not customer_id or not stamp.isdigit():
            raise ValidationError(
                f"Malformed multi-invoice order id: {order_id}",
                error_code=ErrorCode.INVALID_ORDER_ID,
                field="order_id",
            )
        return OrderReference(
            kind=OrderKind.MULTI, customer_id=customer_id, timestamp_ms=int(stamp),
        )
    if order_id.startswith(ORDER_PREFIX) and len(order_id) > len(ORDER_PREFIX):
        return OrderReference(kind=OrderKind.SINGLE, invoice_id=order_id[len(ORDER_PREFIX):])
    raise ValidationError(
        f"Unrecognized order id: {order_id}",
        error_code=ErrorCode.INVALID_ORDER_ID,
        field="order_id",
    )
