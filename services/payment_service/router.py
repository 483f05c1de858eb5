from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import get_db
from shared.security.dependencies import verify_internal_api_key
from services.order_service.schemas import OrderResponse

from .gateway import GatewayClient, get_gateway
from .schemas import (
    GatewayCallback,
    InitiateResponse,
    PaymentCallbackResponse,
    ReconcileResult,
    RefundRequest,
    RefundResponse,
)
from .service import PaymentService

router = APIRouter(dependencies=[Depends(verify_internal_api_key)])
# The gateway calls back from outside the cluster; callbacks are verified with the gateway instead
public_router = APIRouter()

@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "payment", "status": "running"}


@public_router.post("/callback", response_model=ReconcileResult)
async def payment_callback(
    callback: GatewayCallback,
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway)
):
    return await PaymentService.reconcile_payment(db, callback, gateway)

@router.post("/{order_id}/initiate", response_model=InitiateResponse)
async def initiate_payment(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway)
):
    return await PaymentService.initiate_payment(db, order_id, gateway)

@router.post("/{order_id}/retry", response_model=OrderResponse)
async def retry_payment(order_id: int, db: AsyncSession = Depends(get_db)):
    return await PaymentService.retry_payment(db, order_id)

@router.post("/{order_id}/refund", response_model=RefundResponse)
async def refund_payment(
    order_id: int,
    payload: RefundRequest,
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway)
):
    return await PaymentService.refund_payment(db, order_id, payload.reason, payload.amount, gateway)

@router.get("/{order_id}/callbacks", response_model=list[PaymentCallbackResponse])
async def list_callbacks(order_id: int, db: AsyncSession = Depends(get_db)):
    return await PaymentService.get_callbacks(db, order_id)
