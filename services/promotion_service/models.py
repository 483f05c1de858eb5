from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, Numeric, String
from sqlalchemy.orm import declared_attr
from sqlalchemy.sql import expression, func

from shared.config.database import Base


class DiscountRuleMixin:
    """Columns shared by coupons and offers; the discount engine reads only these."""

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(20), unique=True, nullable=False, index=True) # normalized upper-case
    seller_id = Column(String(64), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=True)

    discount_type = Column(String(16), nullable=False, default="percentage") # 'percentage' or 'fixed_amount'
    discount_value = Column(Numeric(12, 2), nullable=False)
    max_discount_amount = Column(Numeric(12, 2), nullable=True) # cap for percentage discounts

    minimum_order_amount = Column(Numeric(12, 2), nullable=False, default=0)
    max_total_uses = Column(Integer, nullable=True) # None means unlimited

    applicable_products = Column(JSON, nullable=False, default=list) # empty means all products
    excluded_products = Column(JSON, nullable=False, default=list)
    applicable_categories = Column(JSON, nullable=False, default=list)

    valid_from = Column(DateTime(timezone=True), nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default=expression.true())

    # Running counters, adjusted atomically by redemption and reversal
    total_usage_count = Column(Integer, nullable=False, default=0, server_default="0")
    total_discount_given = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @declared_attr
    def __table_args__(cls):
        return {"schema": "promotion_schema"}


class Coupon(DiscountRuleMixin, Base):
    __tablename__ = "coupons"
    kind = "coupon"

    max_uses_per_customer = Column(Integer, nullable=True, default=1)
    coupon_type = Column(String(32), nullable=False, default="general")


class Offer(DiscountRuleMixin, Base):
    __tablename__ = "offers"
    kind = "offer"

    # Offers are storefront promotions: no per-customer cap unless configured
    max_uses_per_customer = Column(Integer, nullable=True)
    offer_type = Column(String(16), nullable=False, default="card") # banner, card, popup
    category = Column(String(32), nullable=False, default="general")
    priority = Column(Integer, nullable=False, default=0)


class PromotionUsage(Base):
    """Append-only usage log. A reversal is a new row with is_reversal=True."""
    __tablename__ = "promotion_usages"
    __table_args__ = {"schema": "promotion_schema"}

    id = Column(Integer, primary_key=True, index=True)
    promotion_kind = Column(String(16), nullable=False)
    promotion_id = Column(Integer, nullable=False, index=True)
    order_id = Column(Integer, nullable=False, index=True)
    customer_id = Column(String(64), nullable=False, index=True)
    discount_amount = Column(Numeric(12, 2), nullable=False)
    order_amount = Column(Numeric(12, 2), nullable=False)
    is_reversal = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime(timezone=True), nullable=False)
