from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import settings
from shared.config.database import get_db
from shared.security import get_current_customer, limiter, verify_internal_api_key
from .schemas import OrderCreate, OrderResponse, StatusHistoryResponse, StatusUpdate
from .service import OrderService
from .state_machine import OrderStatus

# Operator and service-to-service endpoints
router = APIRouter(dependencies=[Depends(verify_internal_api_key)])
# Checkout is called on behalf of a signed-in customer
customer_router = APIRouter()
public_router = APIRouter()

@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "order", "status": "running"}


@customer_router.post("/", response_model=OrderResponse, status_code=201)
@limiter.limit(settings.ORDER_RATE_LIMIT)
async def create_order(
    request: Request,                              # slowapi needs this to key the limit
    payload: OrderCreate,
    customer_id: str = Depends(get_current_customer),
    db: AsyncSession = Depends(get_db)
):
    return await OrderService.create_order(db, customer_id, payload)

@router.get("/", response_model=list[OrderResponse])
async def list_orders(
    customer_id: str | None = Query(default=None),
    status: OrderStatus | None = Query(default=None),
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db)
):
    return await OrderService.list_orders(db, customer_id, status, skip, limit)

@router.get("/number/{order_number}", response_model=OrderResponse)
async def get_order_by_number(order_number: str, db: AsyncSession = Depends(get_db)):
    return await OrderService.get_order_by_number(db, order_number)

@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: int, db: AsyncSession = Depends(get_db)):
    return await OrderService.get_order(db, order_id)

@router.put("/{order_id}/status", response_model=OrderResponse)
async def update_status(order_id: int, payload: StatusUpdate, db: AsyncSession = Depends(get_db)):
    return await OrderService.transition_order_status(
        db, order_id, payload.status, payload.note, payload.tracking_number
    )

@router.get("/{order_id}/history", response_model=list[StatusHistoryResponse])
async def get_history(order_id: int, db: AsyncSession = Depends(get_db)):
    return await OrderService.get_status_history(db, order_id)

# Administrative purge; counted orders are refused
@router.delete("/{order_id}")
async def purge_order(order_id: int, db: AsyncSession = Depends(get_db)):
    await OrderService.purge_order(db, order_id)
    return {"message": "Order purged", "order_id": order_id}
