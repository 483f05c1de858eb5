from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from .state_machine import OrderStatus, PaymentMethod, PaymentStatus


class OrderItemCreate(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=1)
    color: Optional[str] = None
    size: Optional[str] = None
    customization: Optional[Dict[str, Any]] = None


class DeliveryInfo(BaseModel):
    customer_name: str = Field(..., min_length=1, max_length=255)
    customer_phone: str = Field(..., min_length=6, max_length=32)
    customer_email: Optional[EmailStr] = None
    address: str = Field(..., min_length=5, max_length=500)
    # Overrides keyword detection when the storefront already knows the zone
    is_fast_zone: Optional[bool] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class OrderCreate(BaseModel):
    items: List[OrderItemCreate] = Field(..., min_length=1)
    delivery_info: DeliveryInfo
    payment_method: PaymentMethod = PaymentMethod.CASH_ON_DELIVERY
    promo_code: Optional[str] = None


class StatusUpdate(BaseModel):
    status: OrderStatus
    note: Optional[str] = Field(default=None, max_length=500)
    tracking_number: Optional[str] = Field(default=None, max_length=128)


class OrderItemResponse(BaseModel):
    product_id: int
    product_name: str
    color: Optional[str]
    size: Optional[str]
    unit_price: Decimal
    quantity: int
    line_total: Decimal
    customization: Optional[Dict[str, Any]]

    model_config = ConfigDict(from_attributes=True)


class StatusHistoryResponse(BaseModel):
    status: OrderStatus
    note: Optional[str]
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class OrderResponse(BaseModel):
    id: int
    order_number: str
    customer_id: str
    customer_name: str
    customer_phone: str
    customer_email: Optional[str]
    delivery_address: str
    is_fast_zone: bool
    estimated_delivery_date: Optional[datetime]
    subtotal: Decimal
    delivery_charge: Decimal
    discount_amount: Decimal
    promo_code: Optional[str]
    total_amount: Decimal
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    transaction_id: Optional[str]
    payment_date: Optional[datetime]
    refund_amount: Optional[Decimal]
    requires_manual_processing: bool
    status: OrderStatus
    tracking_number: Optional[str]
    shipped_at: Optional[datetime]
    delivered_at: Optional[datetime]
    sales_counted: bool
    version: int
    created_at: datetime
    items: List[OrderItemResponse]

    model_config = ConfigDict(from_attributes=True)
