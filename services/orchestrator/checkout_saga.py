"""
Checkout: create the order, then open a gateway payment for online methods.
If the payment cannot be opened the order is cancelled again.
"""
import structlog

from services.order_service.service import OrderService
from services.order_service.state_machine import PaymentMethod
from services.payment_service.service import PaymentService
from .saga import SagaOrchestrator

logger = structlog.get_logger(__name__)

# --- ACTIONS ---

async def create_order(ctx: dict):
    order = await OrderService.create_order(ctx["db"], ctx["customer_id"], ctx["payload"])
    ctx["order_id"] = order.id
    ctx["order"] = order

async def initiate_payment(ctx: dict):
    if not PaymentMethod(ctx["order"].payment_method).is_online:
        return
    ctx["payment"] = await PaymentService.initiate_payment(ctx["db"], ctx["order_id"], ctx.get("gateway"))
    ctx["order"] = await OrderService.get_order(ctx["db"], ctx["order_id"])


# --- COMPENSATIONS (Rollbacks) ---

async def rollback_order(ctx: dict):
    db, order_id = ctx["db"], ctx.get("order_id")
    if order_id:
        # The failed step may have left the session mid-transaction
        await db.rollback()
        await OrderService.cancel_order(db, order_id, "Checkout failed: payment could not be started")


# --- BUILDER FACTORY ---

def build_checkout_saga() -> SagaOrchestrator:
    saga = SagaOrchestrator()
    saga.add_step("create_order", create_order, rollback_order)
    saga.add_step("initiate_payment", initiate_payment, None) # Nothing written when it fails
    return saga


async def checkout(db, customer_id: str, payload, gateway=None) -> dict:
    ctx = {"db": db, "customer_id": customer_id, "payload": payload, "gateway": gateway}
    await build_checkout_saga().execute(ctx)
    logger.info("checkout_completed", order_id=ctx["order_id"], online=ctx.get("payment") is not None)
    return {"order": ctx["order"], "payment": ctx.get("payment")}
