"""
Payment gateway clients.

Gateway calls always happen before the ledger write that records their
result, never while a conditional write is pending.
"""
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import httpx
import structlog

from shared.config import settings
from shared.errors import GatewayError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class GatewayPayment:
    payment_id: str
    redirect_url: Optional[str] = None


@dataclass(frozen=True)
class GatewayRefund:
    refund_id: str
    amount: Decimal


class GatewayClient(ABC):
    """Interface the payment service consumes."""

    @abstractmethod
    async def initiate_payment(self, order) -> GatewayPayment:
        ...

    @abstractmethod
    async def verify_callback(self, callback) -> bool:
        ...

    @abstractmethod
    async def refund(self, order, amount: Decimal, reason: str) -> GatewayRefund:
        ...


class HttpGatewayClient(GatewayClient):
    def __init__(self, base_url: str, timeout: float = 10.0, transport=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def _post(self, path: str, body: dict) -> dict:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(f"{self.base_url}{path}", json=body)
                resp.raise_for_status()
                return resp.json()
        except httpx.HTTPError as e:
            logger.error("gateway_request_failed", path=path, error=str(e))
            raise GatewayError() from e

    async def initiate_payment(self, order) -> GatewayPayment:
        data = await self._post("/payments", {
            "amount": str(order.total_amount),
            "invoice_number": order.order_number,
            "method": order.payment_method.value,
        })
        if not data.get("payment_id"):
            raise GatewayError("Payment gateway did not return a payment id")
        return GatewayPayment(payment_id=data["payment_id"], redirect_url=data.get("redirect_url"))

    async def verify_callback(self, callback) -> bool:
        # The gateway is the source of truth: ask it whether the outcome is real
        reference = callback.gateway_payment_id or callback.transaction_id
        if not reference:
            return False
        data = await self._post("/payments/verify", {
            "reference": reference,
            "transaction_id": callback.transaction_id,
        })
        return data.get("status") == callback.outcome

    async def refund(self, order, amount: Decimal, reason: str) -> GatewayRefund:
        data = await self._post("/refunds", {
            "transaction_id": order.transaction_id,
            "amount": str(amount),
            "reason": reason,
        })
        if not data.get("refund_id"):
            raise GatewayError("Payment gateway refused the refund")
        return GatewayRefund(refund_id=data["refund_id"], amount=Decimal(str(data.get("amount", amount))))


class SimulatedGatewayClient(GatewayClient):
    """Used when no gateway is configured: every request succeeds."""

    async def initiate_payment(self, order) -> GatewayPayment:
        payment_id = f"SIM-{uuid.uuid4().hex[:16].upper()}"
        logger.info("gateway_simulated_payment", order_id=order.id, payment_id=payment_id)
        return GatewayPayment(payment_id=payment_id, redirect_url=None)

    async def verify_callback(self, callback) -> bool:
        return True

    async def refund(self, order, amount: Decimal, reason: str) -> GatewayRefund:
        return GatewayRefund(refund_id=f"SIMREF-{uuid.uuid4().hex[:12].upper()}", amount=amount)


def get_gateway() -> GatewayClient:
    if settings.PAYMENT_GATEWAY_URL:
        return HttpGatewayClient(settings.PAYMENT_GATEWAY_URL, settings.PAYMENT_GATEWAY_TIMEOUT)
    return SimulatedGatewayClient()
