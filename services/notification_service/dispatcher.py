"""
Fire-and-forget notifications for order events.

Events are POSTed to a webhook that owns email/SMS formatting. Delivery runs
in a background task: a slow or failing webhook never delays or fails the
order operation that produced the event.
"""
import asyncio

import httpx
import structlog

from shared.config import settings

logger = structlog.get_logger(__name__)


def _order_payload(order) -> dict:
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "customer_id": order.customer_id,
        "customer_name": order.customer_name,
        "customer_email": order.customer_email,
        "customer_phone": order.customer_phone,
        "status": getattr(order.status, "value", order.status),
        "payment_status": getattr(order.payment_status, "value", order.payment_status),
        "total_amount": str(order.total_amount),
        "tracking_number": order.tracking_number,
    }


class NotificationDispatcher:

    def __init__(self, webhook_url: str | None = None, timeout: float | None = None, transport=None):
        self.webhook_url = webhook_url if webhook_url is not None else settings.NOTIFICATION_WEBHOOK_URL
        self.timeout = timeout or settings.NOTIFICATION_TIMEOUT
        self.transport = transport
        # Strong references so pending deliveries are not garbage collected
        self._pending: set[asyncio.Task] = set()

    def order_placed(self, order) -> None:
        self._schedule("order_placed", _order_payload(order))

    def order_status_changed(self, order, status) -> None:
        payload = _order_payload(order)
        payload["status"] = getattr(status, "value", status)
        self._schedule("order_status_changed", payload)

    def payment_status_changed(self, order) -> None:
        self._schedule("payment_status_changed", _order_payload(order))

    def _schedule(self, event: str, payload: dict) -> None:
        if not self.webhook_url:
            logger.info("notification_skipped", event_type=event, order_id=payload["order_id"])
            return
        task = asyncio.create_task(self._deliver(event, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, event: str, payload: dict) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(self.webhook_url, json={"event": event, "data": payload})
                resp.raise_for_status()
            logger.info("notification_sent", event_type=event, order_id=payload["order_id"])
        except httpx.HTTPError as e:
            logger.warning(
                "notification_failed",
                event_type=event,
                order_id=payload["order_id"],
                error=str(e),
            )

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown hook)."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)


notifier = NotificationDispatcher()
