from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from services.order_service.state_machine import PaymentStatus


class GatewayCallback(BaseModel):
    order_id: Optional[int] = None
    gateway_payment_id: Optional[str] = None
    outcome: Literal["success", "failure"]
    transaction_id: Optional[str] = None
    payload: Dict[str, Any] = {}

    @model_validator(mode="after")
    def check_identity(self):
        if self.order_id is None and not self.gateway_payment_id:
            raise ValueError("order_id or gateway_payment_id is required")
        if self.outcome == "success" and not self.transaction_id:
            raise ValueError("transaction_id is required for a successful payment")
        return self


class ReconcileResult(BaseModel):
    accepted: bool
    order_id: int
    order_number: str
    payment_status: PaymentStatus
    replayed: bool = False
    disposition: str


class InitiateResponse(BaseModel):
    order_id: int
    order_number: str
    gateway_payment_id: str
    redirect_url: Optional[str]
    payment_status: PaymentStatus
    amount: Decimal


class RefundRequest(BaseModel):
    reason: str = Field(..., min_length=3, max_length=500)
    # Omitted means refund everything still refundable
    amount: Optional[Decimal] = Field(default=None, gt=0)


class RefundResponse(BaseModel):
    order_id: int
    order_number: str
    refund_id: str
    refund_amount: Decimal
    payment_status: PaymentStatus
    requires_manual_processing: bool


class PaymentCallbackResponse(BaseModel):
    id: int
    order_id: Optional[int]
    gateway_payment_id: Optional[str]
    outcome: str
    transaction_id: Optional[str]
    disposition: str
    detail: Optional[str]
    received_at: datetime

    model_config = ConfigDict(from_attributes=True)
