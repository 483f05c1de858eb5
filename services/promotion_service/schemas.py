from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .engine import normalize_code


class PromotionBase(BaseModel):
    code: str = Field(..., min_length=3, max_length=20)
    seller_id: str
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    discount_type: Literal["percentage", "fixed_amount"] = "percentage"
    discount_value: Decimal = Field(..., gt=0)
    max_discount_amount: Optional[Decimal] = Field(default=None, gt=0)
    minimum_order_amount: Decimal = Field(default=Decimal("0"), ge=0)
    max_total_uses: Optional[int] = Field(default=None, ge=1)
    applicable_products: List[int] = []
    excluded_products: List[int] = []
    applicable_categories: List[str] = []
    valid_from: datetime
    valid_until: datetime
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def normalize(cls, value: str) -> str:
        code = normalize_code(value)
        if not code.isalnum():
            raise ValueError("code may only contain letters and digits")
        return code

    @model_validator(mode="after")
    def check_rule(self):
        if self.discount_type == "percentage" and self.discount_value > 100:
            raise ValueError("percentage discount cannot exceed 100")
        if self.valid_until <= self.valid_from:
            raise ValueError("valid_until must be after valid_from")
        return self


class CouponCreate(PromotionBase):
    max_uses_per_customer: Optional[int] = Field(default=1, ge=1)
    coupon_type: str = "general"


class OfferCreate(PromotionBase):
    max_uses_per_customer: Optional[int] = Field(default=None, ge=1)
    offer_type: Literal["banner", "card", "popup"] = "card"
    category: str = "general"
    priority: int = 0


class PromotionResponse(BaseModel):
    id: int
    kind: str
    code: str
    seller_id: str
    name: str
    discount_type: str
    discount_value: Decimal
    max_discount_amount: Optional[Decimal]
    minimum_order_amount: Decimal
    max_total_uses: Optional[int]
    max_uses_per_customer: Optional[int]
    valid_from: datetime
    valid_until: datetime
    is_active: bool
    total_usage_count: int
    total_discount_given: Decimal

    model_config = ConfigDict(from_attributes=True)


class SnapshotItemIn(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=1)
    line_total: Decimal = Field(..., ge=0)
    category: Optional[str] = None


class ValidateRequest(BaseModel):
    code: str
    items: List[SnapshotItemIn] = Field(..., min_length=1)
    subtotal: Optional[Decimal] = Field(default=None, ge=0)


class ValidateResponse(BaseModel):
    valid: bool
    code: str
    kind: str
    reason: Optional[str] = None
    discount: Decimal
