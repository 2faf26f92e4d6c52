"""Hosted-checkout payment gateway client.

``SnapGatewayClient`` creates Snap checkout sessions over HTTP with
aiohttp. Without a server key it runs in demo mode and returns a
deterministic token, so the billing flow works in development and tests.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Protocol, runtime_checkable

import aiohttp

from src.errors import GatewayError

logger = logging.getLogger(__name__)

SANDBOX_URL = "https://app.sandbox.midtrans.com/snap/v1/transactions"
PRODUCTION_URL = "https://app.midtrans.com/snap/v1/transactions"
DEMO_REDIRECT_BASE = "https://app.sandbox.midtrans.com/snap/v2/vtweb"


@dataclass
class LineItem:
    item_id: str
    name: str
    price: Decimal
    quantity: int = 1

    def to_dict(self) -> dict:
        return {
            "id": self.item_id,
            "price": int(self.price),
            "quantity": self.quantity,
            "name": self.name[:50],
        }


@dataclass
class CheckoutRequest:
    """Everything the gateway needs to open a hosted checkout."""
    order_id: str
    items: List[LineItem]
    customer_name: str = ""
    customer_email: str = ""
    customer_phone: str = ""
    finish_url: str = ""
    error_url: str = ""
    pending_url: str = ""
    invoice_ids: List[str] = field(default_factory=list)

    @property
    def gross_amount(self) -> Decimal:
        return sum((i.price * i.quantity for i in self.items), Decimal("0"))

    def to_payload(self) -> dict:
        payload = {
            "transaction_details": {
                "order_id": self.order_id,
                "gross_amount": int(self.gross_amount),
            },
            "customer_details": {
                "first_name": self.customer_name,
                "email": self.customer_email,
                "phone": self.customer_phone,
            },
            "item_details": [i.to_dict() for i in self.items],
        }
        if self.finish_url:
            payload["callbacks"] = {
                "finish": self.finish_url,
                "error": self.error_url,
                "pending": self.pending_url,
            }
        if len(self.invoice_ids) > 1:
            payload["custom_field1"] = ",".join(self.invoice_ids)
        return payload


@dataclass
class CheckoutSession:
    """Token and redirect URL returned by the gateway."""
    order_id: str
    token: str
    redirect_url: str
    gross_amount: Decimal
    demo: bool = False

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "token": self.token,
            "redirect_url": self.redirect_url,
            "gross_amount": str(self.gross_amount),
            "demo": self.demo,
        }


@runtime_checkable
class PaymentGatewayClient(Protocol):
    """Protocol for hosted-checkout gateways."""

    async def create_checkout(self, request: CheckoutRequest) -> CheckoutSession: ...


class SnapGatewayClient:
    """Snap hosted-checkout client (demo mode without a server key)."""

    def __init__(
        self,
        server_key: str = "",
        is_production: bool = False,
        timeout_seconds: float = 15.0,
    ):
        self._server_key = server_key
        self._url = PRODUCTION_URL if is_production else SANDBOX_URL
        self._timeout = timeout_seconds

    @classmethod
    def from_settings(cls, settings) -> "SnapGatewayClient":
        return cls(
            server_key=settings.payment_server_key,
            is_production=settings.payment_is_production,
        )

    def is_configured(self) -> bool:
        return bool(self._server_key)

    async def create_checkout(self, request: CheckoutRequest) -> CheckoutSession:
        if not self.is_configured():
            return self._demo_session(request)

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self._url,
                    json=request.to_payload(),
                    auth=aiohttp.BasicAuth(self._server_key, ""),
                    headers={"Accept": "application/json"},
                    timeout=aiohttp.ClientTimeout(total=self._timeout),
                ) as resp:
                    if resp.status not in (200, 201):
                        body = await resp.text()
                        logger.error("Snap checkout %s failed (%d): %s",
                                     request.order_id, resp.status, body)
                        raise GatewayError(
                            f"Gateway rejected order {request.order_id} with status {resp.status}"
                        )
                    data = await resp.json()
        except aiohttp.ClientError as e:
            logger.error("Snap checkout %s error: %s", request.order_id, e)
            raise GatewayError(f"Gateway request failed: {e}") from e

        return CheckoutSession(
            order_id=request.order_id,
            token=data["token"],
            redirect_url=data["redirect_url"],
            gross_amount=request.gross_amount,
        )

    def _demo_session(self, request: CheckoutRequest) -> CheckoutSession:
        token = hashlib.sha256(request.order_id.encode()).hexdigest()[:32]
        logger.info("[SNAP DEMO] %s amount=%s", request.order_id, request.gross_amount)
        return CheckoutSession(
            order_id=request.order_id,
            token=token,
            redirect_url=f"{DEMO_REDIRECT_BASE}/{token}",
            gross_amount=request.gross_amount,
            demo=True,
        )
