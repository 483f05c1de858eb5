from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import expression, func

from shared.config.database import Base
from .state_machine import OrderStatus, PaymentMethod, PaymentStatus


def _enum_column(enum_cls, name: str):
    # Stored as the enum values ("pending", ...), checked by a constraint
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=True,
        length=32,
        values_callable=lambda members: [m.value for m in members],
    )


class Order(Base):
    __tablename__ = "orders"
    # We use a separate schema to simulate microservice isolation
    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="ck_orders_total_non_negative"),
        {"schema": "order_schema"},
    )

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(32), unique=True, nullable=False, index=True)
    customer_id = Column(String(64), nullable=False, index=True)

    # Customer contact
    customer_name = Column(String(255), nullable=False)
    customer_email = Column(String(255), nullable=True)
    customer_phone = Column(String(32), nullable=False)

    # Delivery
    delivery_address = Column(String(500), nullable=False)
    is_fast_zone = Column(Boolean, nullable=False, default=False)
    delivery_notes = Column(Text, nullable=True)
    estimated_delivery_date = Column(DateTime(timezone=True), nullable=True)

    # Pricing: total = subtotal + delivery_charge - discount_amount
    subtotal = Column(Numeric(12, 2), nullable=False)
    delivery_charge = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    promo_code = Column(String(32), nullable=True, index=True)
    promo_kind = Column(String(16), nullable=True) # 'coupon' or 'offer'
    total_amount = Column(Numeric(12, 2), nullable=False)

    # Payment sub-state
    payment_method = Column(_enum_column(PaymentMethod, "payment_method"), nullable=False)
    payment_status = Column(
        _enum_column(PaymentStatus, "payment_status"),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True,
    )
    gateway_payment_id = Column(String(128), nullable=True, unique=True)
    transaction_id = Column(String(128), nullable=True)
    payment_date = Column(DateTime(timezone=True), nullable=True)
    payment_failed_at = Column(DateTime(timezone=True), nullable=True)
    refund_id = Column(String(128), nullable=True)
    refund_date = Column(DateTime(timezone=True), nullable=True)
    refund_amount = Column(Numeric(12, 2), nullable=True)
    refund_reason = Column(String(500), nullable=True)
    requires_manual_processing = Column(Boolean, nullable=False, default=False)

    # Fulfilment
    status = Column(
        _enum_column(OrderStatus, "order_status"),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True,
    )
    tracking_number = Column(String(128), nullable=True)
    shipped_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)

    # Ledger guard: True while this order's quantities are in the sales counters
    sales_counted = Column(Boolean, nullable=False, default=False, server_default=expression.false())
    # Optimistic concurrency: every conditional write bumps it
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.id",
    )
    status_history = relationship(
        "OrderStatusHistory",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderStatusHistory.id",
    )

    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self.items)

    def __repr__(self):
        return f"<Order(number={self.order_number}, status={self.status}, payment={self.payment_status})>"


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
        {"schema": "order_schema"},
    )

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("order_schema.orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False, index=True)
    product_name = Column(String(255), nullable=False)
    color = Column(String(64), nullable=True)
    size = Column(String(32), nullable=True)
    unit_price = Column(Numeric(12, 2), nullable=False)
    quantity = Column(Integer, nullable=False)
    line_total = Column(Numeric(12, 2), nullable=False)
    customization = Column(JSON, nullable=True)

    order = relationship("Order", back_populates="items")


class OrderStatusHistory(Base):
    """Append-only: rows are inserted with the transition and never updated."""
    __tablename__ = "order_status_history"
    __table_args__ = {"schema": "order_schema"}

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("order_schema.orders.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(_enum_column(OrderStatus, "history_status"), nullable=False)
    note = Column(String(500), nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)

    order = relationship("Order", back_populates="status_history")
