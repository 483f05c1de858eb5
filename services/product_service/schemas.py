from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator

class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    seller_id: Optional[str] = None
    category: Optional[str] = None
    price: Decimal = Field(..., gt=0, decimal_places=2)
    offer_price: Optional[Decimal] = Field(default=None, gt=0, decimal_places=2)
    colors: List[str] = []
    sizes: List[str] = []
    stock: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def check_offer_price(self):
        if self.offer_price is not None and self.offer_price > self.price:
            raise ValueError("offer_price cannot exceed price")
        return self

class ProductResponse(BaseModel):
    id: int
    name: str
    seller_id: Optional[str]
    category: Optional[str]
    price: Decimal
    offer_price: Optional[Decimal]
    colors: List[str]
    sizes: List[str]
    stock: int
    sales_count: int

    model_config = ConfigDict(from_attributes=True)
