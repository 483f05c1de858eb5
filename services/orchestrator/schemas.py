from typing import Optional

from pydantic import BaseModel

from services.order_service.schemas import OrderResponse
from services.payment_service.schemas import InitiateResponse


class CheckoutResponse(BaseModel):
    order: OrderResponse
    payment: Optional[InitiateResponse] = None
