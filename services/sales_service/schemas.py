from pydantic import BaseModel


class RecalculationResult(BaseModel):
    products_updated: int
    orders_scanned: int
    promotions_updated: int
    drift_detected: int


class ProductSales(BaseModel):
    product_id: int
    name: str
    sales_count: int
