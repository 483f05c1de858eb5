"""
Sales Ledger Updater.

``apply_delta`` is the only code path that moves product sales counters and
promotion usage counters. Each order carries a ``sales_counted`` guard that is
flipped with a conditional write in the caller's transaction, so a replayed or
redundant delta matches no row and changes nothing.
"""
import time
from collections import defaultdict

import structlog
from opentelemetry import trace
from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.observability import (
    ledger_drift_total,
    ledger_recalculation_duration_seconds,
    ledger_sales_deltas_total,
)
from shared.retry import retry_ledger_operation
from services.order_service.models import Order, OrderItem
from services.order_service.repository import OrderRepository
from services.order_service.state_machine import (
    CAPTURED_PAYMENT_STATUSES,
    REVERSAL_STATUSES,
    OrderStatus,
    PaymentMethod,
    is_counted,
)
from services.product_service.repository import ProductRepository
from services.promotion_service.engine import to_money
from services.promotion_service.repository import PROMOTION_MODELS, PromotionRepository
from services.promotion_service.service import PromotionService

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

INCREMENT = 1
DECREMENT = -1


def counted_clause():
    """SQL form of ``state_machine.is_counted_state``."""
    return or_(
        and_(
            Order.payment_method != PaymentMethod.CASH_ON_DELIVERY,
            Order.payment_status.in_(list(CAPTURED_PAYMENT_STATUSES)),
            Order.status.not_in(list(REVERSAL_STATUSES)),
        ),
        and_(
            Order.payment_method == PaymentMethod.CASH_ON_DELIVERY,
            Order.status == OrderStatus.DELIVERED,
        ),
    )


def _discounted_clause():
    return and_(Order.promo_code.is_not(None), Order.promo_kind.is_not(None), Order.discount_amount > 0)


def _quantities_by_product(order) -> dict[int, int]:
    # Variants of one product share a counter
    totals = defaultdict(int)
    for item in order.items:
        totals[item.product_id] += item.quantity
    return dict(totals)


async def apply_delta(db: AsyncSession, order, sign: int) -> bool:
    """
    Move the order's quantities into (+1) or out of (-1) the sales ledger.

    Runs inside the caller's transaction and does not commit. Returns False
    when the guard shows the delta was already applied.
    """
    if sign not in (INCREMENT, DECREMENT):
        raise ValueError("sign must be +1 or -1")
    sign_label = "increment" if sign == INCREMENT else "decrement"

    with tracer.start_as_current_span("ledger.apply_delta") as span:
        span.set_attribute("order.id", order.id)
        span.set_attribute("ledger.sign", sign)

        if not await OrderRepository.flip_sales_counted(db, order.id, sign == INCREMENT):
            ledger_sales_deltas_total.labels(sign=sign_label, result="redundant").inc()
            logger.info("ledger_delta_redundant", order_id=order.id, sign=sign)
            return False

        for product_id, quantity in _quantities_by_product(order).items():
            if sign == INCREMENT:
                if not await ProductRepository.increment_sales(db, product_id, quantity):
                    logger.warning("ledger_product_missing", order_id=order.id, product_id=product_id)
                continue

            if await ProductRepository.decrement_sales(db, product_id, quantity):
                continue
            if await ProductRepository.clamp_sales_to_zero(db, product_id, quantity):
                ledger_drift_total.labels(source="clamp").inc()
                logger.warning(
                    "ledger_drift",
                    source="clamp",
                    order_id=order.id,
                    product_id=product_id,
                    quantity=quantity,
                )
            else:
                logger.warning("ledger_product_missing", order_id=order.id, product_id=product_id)

        if order.promo_code and order.promo_kind and to_money(order.discount_amount or 0) > 0:
            if sign == INCREMENT:
                await PromotionService.record_usage(db, order)
            else:
                await PromotionService.record_reversal(db, order)

    ledger_sales_deltas_total.labels(sign=sign_label, result="applied").inc()
    logger.info("ledger_delta_applied", order_id=order.id, sign=sign, items=len(order.items))
    return True


@retry_ledger_operation()
async def recalculate_sales_ledger(db: AsyncSession) -> dict:
    """
    Rebuild every derived counter by replaying the counted orders.

    The per-order guard is realigned with the counted predicate (realigned
    promotion orders get the missing redemption or reversal row), product
    counters are overwritten with the sum of quantities over counted orders,
    and promotion counters with the count and discount total of counted
    orders per code. Every correction is logged as drift.
    """
    started = time.perf_counter()
    drift = 0

    with tracer.start_as_current_span("ledger.recalculate"):
        # 1. Per-order guard
        result = await db.execute(select(Order.id, Order.sales_counted, counted_clause().label("counted")))
        rows = result.all()
        counted_ids = [row.id for row in rows if row.counted]
        to_set = [row.id for row in rows if row.counted and not row.sales_counted]
        to_clear = [row.id for row in rows if not row.counted and row.sales_counted]
        await OrderRepository.set_sales_counted_for(db, to_set, True)
        await OrderRepository.set_sales_counted_for(db, to_clear, False)
        for order_id in to_set + to_clear:
            logger.warning("ledger_drift", source="recalculation", order_id=order_id, field="sales_counted")
        drift += len(to_set) + len(to_clear)

        if to_set or to_clear:
            result = await db.execute(
                select(Order).where(Order.id.in_(to_set + to_clear), _discounted_clause())
            )
            for order in result.scalars().all():
                await PromotionService.log_realigned_order(db, order, counted=order.id in to_set)

        # 2. Product counters
        result = await db.execute(
            select(OrderItem.product_id, func.sum(OrderItem.quantity))
            .join(Order, Order.id == OrderItem.order_id)
            .where(counted_clause())
            .group_by(OrderItem.product_id)
        )
        expected_sales = {product_id: int(total) for product_id, total in result}
        stored_sales = await ProductRepository.get_sales_counts(db)
        for product_id, stored in stored_sales.items():
            expected = expected_sales.get(product_id, 0)
            if stored != expected:
                await ProductRepository.set_sales_count(db, product_id, expected)
                drift += 1
                logger.warning(
                    "ledger_drift",
                    source="recalculation",
                    product_id=product_id,
                    stored=stored,
                    expected=expected,
                )

        # 3. Promotion counters
        result = await db.execute(
            select(Order.promo_kind, Order.promo_code, func.count(Order.id), func.sum(Order.discount_amount))
            .where(counted_clause(), _discounted_clause())
            .group_by(Order.promo_kind, Order.promo_code)
        )
        expected_usage = {
            (kind, code): (int(uses), to_money(amount or 0)) for kind, code, uses, amount in result
        }
        promotions_updated = 0
        for kind in PROMOTION_MODELS:
            for code, (promotion_id, *stored) in (await PromotionRepository.get_counters(db, kind)).items():
                expected = expected_usage.get((kind, code), (0, to_money(0)))
                if tuple(stored) != expected:
                    await PromotionRepository.set_counters(db, kind, promotion_id, *expected)
                    promotions_updated += 1
                    logger.warning(
                        "ledger_drift",
                        source="recalculation",
                        promotion_kind=kind,
                        promotion_id=promotion_id,
                        stored_uses=stored[0],
                        expected_uses=expected[0],
                    )
        drift += promotions_updated

        await db.commit()

    if drift:
        ledger_drift_total.labels(source="recalculation").inc(drift)
    ledger_recalculation_duration_seconds.observe(time.perf_counter() - started)

    summary = {
        "products_updated": len([p for p in expected_sales if p in stored_sales]),
        "orders_scanned": len(counted_ids),
        "promotions_updated": promotions_updated,
        "drift_detected": drift,
    }
    logger.info("ledger_recalculated", **summary)
    return summary


async def sync_ledger(db: AsyncSession, order) -> bool:
    """
    Apply whichever delta brings the order in line with the counted predicate.

    Used after every state change; a no-op when the guard already agrees.
    """
    should_count = is_counted(order)
    if should_count == bool(order.sales_counted):
        return False
    return await apply_delta(db, order, INCREMENT if should_count else DECREMENT)
