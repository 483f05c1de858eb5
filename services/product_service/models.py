from sqlalchemy import CheckConstraint, Column, DateTime, Integer, JSON, Numeric, String
from sqlalchemy.sql import func
from shared.config.database import Base

class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("sales_count >= 0", name="ck_products_sales_count_non_negative"),
        {"schema": "product_schema"},
    )

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(String(64), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    category = Column(String(64), nullable=True, index=True)
    price = Column(Numeric(12, 2), nullable=False)
    offer_price = Column(Numeric(12, 2), nullable=True)
    colors = Column(JSON, nullable=False, default=list) # empty list means any color
    sizes = Column(JSON, nullable=False, default=list)
    stock = Column(Integer, nullable=False, default=0)
    # Derived from counted orders; only the sales ledger touches it
    sales_count = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def selling_price(self):
        return self.offer_price or self.price
