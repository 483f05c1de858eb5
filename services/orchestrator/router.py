from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import settings
from shared.config.database import get_db
from shared.security import get_current_customer, limiter
from services.order_service.schemas import OrderCreate
from services.payment_service.gateway import GatewayClient, get_gateway
from .checkout_saga import checkout
from .schemas import CheckoutResponse

router = APIRouter()
public_router = APIRouter()

@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "checkout", "status": "running"}


# Order creation plus payment initiation; the order is cancelled if the gateway can't be reached
@router.post("/", response_model=CheckoutResponse, status_code=201)
@limiter.limit(settings.ORDER_RATE_LIMIT)
async def checkout_endpoint(
    request: Request,                              # slowapi needs this to key the limit
    payload: OrderCreate,
    customer_id: str = Depends(get_current_customer),
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway)
):
    return await checkout(db, customer_id, payload, gateway)
