from decimal import Decimal

import structlog
from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession

from shared.errors import ConflictRetry, NotFoundError, ValidationError
from shared.observability import ledger_order_transitions_total
from shared.retry import retry_ledger_operation
from shared.timeutils import utc_now
from services.notification_service.dispatcher import notifier
from services.product_service.repository import ProductRepository
from services.promotion_service.engine import OrderSnapshot, SnapshotItem, normalize_code
from services.promotion_service.repository import PromotionRepository
from services.promotion_service.service import PromotionService
from services.sales_service.ledger import sync_ledger
from . import pricing
from .models import Order, OrderItem, OrderStatusHistory
from .repository import OrderRepository
from .schemas import OrderCreate
from .state_machine import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    can_transition_payment,
    ensure_transition,
    is_counted,
)

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)


class OrderService:

    @staticmethod
    async def create_order(db: AsyncSession, customer_id: str, data: OrderCreate) -> Order:
        with tracer.start_as_current_span("order.create") as span:
            products = await ProductRepository.get_products_by_ids(db, [i.product_id for i in data.items])

            items = []
            for requested in data.items:
                product = products.get(requested.product_id)
                if not product:
                    raise ValidationError(f"Product not found: {requested.product_id}")
                if requested.color and product.colors and requested.color not in product.colors:
                    raise ValidationError(f'Color "{requested.color}" is not available for {product.name}')
                if requested.size and product.sizes and requested.size not in product.sizes:
                    raise ValidationError(f'Size "{requested.size}" is not available for {product.name}')

                # Prices always come from the catalogue, never from the client
                unit_price = pricing.line_total(product.selling_price, 1)
                items.append(OrderItem(
                    product_id=product.id,
                    product_name=product.name,
                    color=requested.color,
                    size=requested.size,
                    unit_price=unit_price,
                    quantity=requested.quantity,
                    line_total=pricing.line_total(unit_price, requested.quantity),
                    customization=requested.customization,
                ))

            subtotal = sum((item.line_total for item in items), Decimal("0.00"))
            delivery = data.delivery_info
            fast_zone = delivery.is_fast_zone if delivery.is_fast_zone is not None \
                else pricing.is_fast_zone_address(delivery.address)
            delivery_charge = pricing.delivery_charge(fast_zone)

            promo_code, promo_kind, discount = None, None, Decimal("0.00")
            if data.promo_code:
                promo_code = normalize_code(data.promo_code)
                promotion = await PromotionRepository.get_by_code(db, promo_code)
                if not promotion:
                    raise ValidationError(f"Invalid promo code: {promo_code}")
                snapshot = OrderSnapshot(
                    subtotal=subtotal,
                    items=tuple(
                        SnapshotItem(
                            product_id=item.product_id,
                            quantity=item.quantity,
                            line_total=item.line_total,
                            category=products[item.product_id].category,
                        )
                        for item in items
                    ),
                )
                result = await PromotionService.evaluate(db, promotion, snapshot, customer_id)
                if not result.valid:
                    raise ValidationError(result.reason)
                promo_kind, discount = promotion.kind, result.discount

            order = Order(
                order_number=pricing.generate_order_number(),
                customer_id=customer_id,
                customer_name=delivery.customer_name,
                customer_email=delivery.customer_email,
                customer_phone=delivery.customer_phone,
                delivery_address=delivery.address,
                is_fast_zone=fast_zone,
                delivery_notes=delivery.notes,
                subtotal=subtotal,
                delivery_charge=delivery_charge,
                discount_amount=discount,
                promo_code=promo_code,
                promo_kind=promo_kind,
                total_amount=pricing.order_total(subtotal, delivery_charge, discount),
                payment_method=data.payment_method,
                status=OrderStatus.PENDING,
                items=items,
                status_history=[
                    OrderStatusHistory(status=OrderStatus.PENDING, note="Order placed", timestamp=utc_now())
                ],
            )
            await OrderRepository.create_order(db, order)
            await db.commit()
            span.set_attribute("order.id", order.id)

        order = await OrderRepository.get_order(db, order.id)
        logger.info(
            "order_created",
            order_id=order.id,
            order_number=order.order_number,
            customer_id=customer_id,
            total=str(order.total_amount),
            promo_code=promo_code,
        )
        notifier.order_placed(order)
        return order

    @staticmethod
    @retry_ledger_operation()
    async def transition_order_status(
        db: AsyncSession,
        order_id: int,
        target: OrderStatus,
        note: str | None = None,
        tracking_number: str | None = None,
    ) -> Order:
        target = OrderStatus(target)
        with tracer.start_as_current_span("order.transition") as span:
            span.set_attribute("order.id", order_id)
            span.set_attribute("order.target_status", target.value)

            order = await OrderRepository.get_order(db, order_id)
            if not order:
                raise NotFoundError("Order", order_id)
            previous = OrderStatus(order.status)
            ensure_transition(previous, target)

            now = utc_now()
            values = {"status": target}
            if target == OrderStatus.SHIPPED:
                values["shipped_at"] = now
                values["estimated_delivery_date"] = pricing.estimated_delivery(now, order.is_fast_zone)
                if tracking_number:
                    values["tracking_number"] = tracking_number
            elif target == OrderStatus.DELIVERED:
                values["delivered_at"] = now
                # Cash is collected at the door
                if not PaymentMethod(order.payment_method).is_online and \
                        can_transition_payment(order.payment_status, PaymentStatus.PAID):
                    values["payment_status"] = PaymentStatus.PAID
                    values["payment_date"] = now

            await OrderRepository.compare_and_set(db, order.id, order.version, values)
            await OrderRepository.append_history(db, order.id, target, note or f"Status changed to {target.value}")

            order = await OrderRepository.get_order(db, order.id)
            await sync_ledger(db, order)
            await db.commit()

        order = await OrderRepository.get_order(db, order_id)
        ledger_order_transitions_total.labels(from_status=previous.value, to_status=target.value).inc()
        logger.info(
            "order_transitioned",
            order_id=order.id,
            from_status=previous.value,
            to_status=target.value,
            sales_counted=order.sales_counted,
        )
        notifier.order_status_changed(order, target)
        return order

    @staticmethod
    async def cancel_order(db: AsyncSession, order_id: int, note: str = "Order cancelled") -> Order:
        return await OrderService.transition_order_status(db, order_id, OrderStatus.CANCELLED, note)

    @staticmethod
    async def get_order(db: AsyncSession, order_id: int) -> Order:
        order = await OrderRepository.get_order(db, order_id)
        if not order:
            raise NotFoundError("Order", order_id)
        return order

    @staticmethod
    async def get_order_by_number(db: AsyncSession, order_number: str) -> Order:
        order = await OrderRepository.get_order_by_number(db, order_number)
        if not order:
            raise NotFoundError("Order", order_number)
        return order

    @staticmethod
    async def list_orders(
        db: AsyncSession,
        customer_id: str | None = None,
        status: OrderStatus | None = None,
        skip: int = 0,
        limit: int = 50,
    ):
        return await OrderRepository.list_orders(db, customer_id, status, skip, limit)

    @staticmethod
    async def get_status_history(db: AsyncSession, order_id: int):
        await OrderService.get_order(db, order_id)
        return await OrderRepository.get_history(db, order_id)

    @staticmethod
    async def purge_order(db: AsyncSession, order_id: int) -> None:
        """Administrative delete. Orders still in the sales ledger are refused."""
        order = await OrderService.get_order(db, order_id)
        if order.sales_counted or is_counted(order):
            raise ValidationError(
                f"Order {order.order_number} is counted in sales; cancel or return it before purging"
            )
        if not await OrderRepository.delete_order(db, order_id):
            await db.rollback()
            raise ConflictRetry("Order", order_id)
        await db.commit()
        logger.warning("order_purged", order_id=order_id, order_number=order.order_number)
