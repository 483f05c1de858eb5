from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shared.errors import ConflictRetry
from shared.timeutils import utc_now
from .models import Order, OrderItem, OrderStatusHistory
from .state_machine import OrderStatus, PaymentStatus

class OrderRepository:
    @staticmethod
    async def create_order(db: AsyncSession, order: Order):
        db.add(order)
        await db.flush()
        return order

    @staticmethod
    async def get_order(db: AsyncSession, order_id: int):
        # Conditional writes bypass the identity map, so always reload
        result = await db.execute(
            select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def get_order_by_number(db: AsyncSession, order_number: str):
        result = await db.execute(
            select(Order).where(Order.order_number == order_number).execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def get_order_by_gateway_payment_id(db: AsyncSession, gateway_payment_id: str):
        result = await db.execute(
            select(Order)
            .where(Order.gateway_payment_id == gateway_payment_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def list_orders(
        db: AsyncSession,
        customer_id: Optional[str] = None,
        status: Optional[OrderStatus] = None,
        skip: int = 0,
        limit: int = 50,
    ):
        stmt = select(Order).order_by(Order.created_at.desc(), Order.id.desc()).offset(skip).limit(limit)
        if customer_id:
            stmt = stmt.where(Order.customer_id == customer_id)
        if status:
            stmt = stmt.where(Order.status == status)
        result = await db.execute(stmt)
        return result.scalars().all()

    @staticmethod
    async def compare_and_set(
        db: AsyncSession,
        order_id: int,
        expected_version: int,
        values: dict,
        expected_payment_status: Optional[PaymentStatus] = None,
    ) -> int:
        """
        Conditional write keyed on (id, version) and optionally the payment
        status snapshot. Bumps the version and returns it; raises ConflictRetry
        when another writer got there first.
        """
        stmt = update(Order).where(Order.id == order_id, Order.version == expected_version)
        if expected_payment_status is not None:
            stmt = stmt.where(Order.payment_status == expected_payment_status)
        result = await db.execute(
            stmt.values(**values, version=expected_version + 1).execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictRetry("Order", order_id)
        return expected_version + 1

    @staticmethod
    async def flip_sales_counted(db: AsyncSession, order_id: int, counted: bool) -> bool:
        """Set the ledger guard only if it currently holds the opposite value."""
        result = await db.execute(
            update(Order)
            .where(Order.id == order_id, Order.sales_counted.is_(not counted))
            .values(sales_counted=counted)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    async def set_sales_counted_for(db: AsyncSession, order_ids, counted: bool) -> int:
        ids = list(order_ids)
        if not ids:
            return 0
        result = await db.execute(
            update(Order)
            .where(Order.id.in_(ids))
            .values(sales_counted=counted)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    @staticmethod
    async def append_history(db: AsyncSession, order_id: int, status: OrderStatus, note: Optional[str] = None):
        entry = OrderStatusHistory(order_id=order_id, status=status, note=note, timestamp=utc_now())
        db.add(entry)
        await db.flush()
        return entry

    @staticmethod
    async def get_history(db: AsyncSession, order_id: int):
        result = await db.execute(
            select(OrderStatusHistory)
            .where(OrderStatusHistory.order_id == order_id)
            .order_by(OrderStatusHistory.id)
        )
        return result.scalars().all()

    @staticmethod
    async def delete_order(db: AsyncSession, order_id: int) -> bool:
        """Delete an order that is not in the sales ledger. False when nothing matched."""
        result = await db.execute(
            delete(Order)
            .where(Order.id == order_id, Order.sales_counted.is_(False))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        # Children go explicitly for stores that do not enforce ON DELETE CASCADE
        await db.execute(delete(OrderItem).where(OrderItem.order_id == order_id))
        await db.execute(delete(OrderStatusHistory).where(OrderStatusHistory.order_id == order_id))
        return True
