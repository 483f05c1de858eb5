"""Tests for order creation and the fulfilment state machine against the store."""

import re
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

from shared.errors import InvalidTransitionError, NotFoundError, ValidationError
from shared.timeutils import as_utc
from services.order_service.models import Order
from services.order_service.repository import OrderRepository
from services.order_service.pricing import is_fast_zone_address
from services.order_service.service import OrderService
from services.order_service.state_machine import (
    ORDER_TRANSITIONS,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)

S = OrderStatus


async def walk(db, order, *statuses):
    for status in statuses:
        order = await OrderService.transition_order_status(db, order.id, status)
    return order


class TestPricing:
    def test_fast_zone_keywords(self):
        assert is_fast_zone_address("Flat 3B, Gulshan 2, Dhaka")
        assert is_fast_zone_address("near TSC, University Area")
        assert not is_fast_zone_address("Agrabad, Chattogram")


class TestCreateOrder:
    async def test_prices_from_catalogue(self, make_order, products):
        order = await make_order([(products["shirt"], 2), (products["mug"], 1)])

        assert order.subtotal == Decimal("1250.00")  # 2 x 500 offer price + 250
        assert order.delivery_charge == Decimal("70.00")
        assert order.discount_amount == Decimal("0.00")
        assert order.total_amount == Decimal("1320.00")
        assert order.subtotal == sum(item.line_total for item in order.items)
        assert [i.unit_price for i in order.items] == [Decimal("500.00"), Decimal("250.00")]

    async def test_standard_delivery_outside_fast_zone(self, make_order, products):
        order = await make_order([(products["mug"], 1)], address="12 CDA Avenue, Chattogram")
        assert order.is_fast_zone is False
        assert order.delivery_charge == Decimal("130.00")
        assert order.total_amount == Decimal("380.00")

    async def test_initial_state(self, make_order, products):
        order = await make_order([(products["mug"], 1)])

        assert re.fullmatch(r"ORD\d{13}[A-Z0-9]{5}", order.order_number)
        assert order.status == S.PENDING
        assert order.payment_status == PaymentStatus.PENDING
        assert order.sales_counted is False
        assert order.version == 1
        assert [(h.status, h.note) for h in order.status_history] == [(S.PENDING, "Order placed")]

    async def test_coupon_discount(self, make_order, make_coupon, products):
        await make_coupon("SAVE10")
        # 2 x 500 = 1000 subtotal
        order = await make_order([(products["shirt"], 2)], promo_code="save10")

        assert order.subtotal == Decimal("1000.00")
        assert order.discount_amount == Decimal("100.00")
        assert order.total_amount == order.subtotal + order.delivery_charge - Decimal("100.00")
        assert order.promo_code == "SAVE10"
        assert order.promo_kind == "coupon"

    async def test_creation_does_not_redeem_coupon(self, db, make_order, make_coupon, products):
        coupon = await make_coupon("SAVE10")
        await make_order([(products["shirt"], 2)], promo_code="SAVE10")
        await db.refresh(coupon)
        assert coupon.total_usage_count == 0

    async def test_unknown_promo_code(self, make_order, products):
        with pytest.raises(ValidationError, match="Invalid promo code: NOPE"):
            await make_order([(products["mug"], 1)], promo_code="nope")

    async def test_failed_coupon_reason_is_surfaced(self, make_order, make_coupon, products):
        await make_coupon("BIGSPEND", minimum_order_amount=Decimal("5000"))
        with pytest.raises(ValidationError, match="Minimum order amount of 5000.00 required"):
            await make_order([(products["mug"], 1)], promo_code="BIGSPEND")

    async def test_unknown_product(self, make_order, products):
        ghost = type("Ghost", (), {"id": 9999})()
        with pytest.raises(ValidationError, match="Product not found: 9999"):
            await make_order([(ghost, 1)])

    async def test_unavailable_variant(self, db, payload_for, products):
        payload = payload_for([(products["shirt"], 1)])
        payload.items[0].color = "purple"
        with pytest.raises(ValidationError, match='Color "purple" is not available'):
            await OrderService.create_order(db, "customer-1", payload)

    async def test_nothing_is_written_on_validation_error(self, db, make_order, products):
        with pytest.raises(ValidationError):
            await make_order([(products["mug"], 1)], promo_code="missing")
        assert await OrderService.list_orders(db) == []


class TestTransitions:
    async def test_happy_path_records_one_history_entry_each(self, db, make_order, products):
        order = await make_order([(products["mug"], 1)])
        order = await walk(db, order, S.CONFIRMED, S.PROCESSING, S.READY_TO_SHIP)

        assert order.status == S.READY_TO_SHIP
        assert [h.status for h in order.status_history] == [S.PENDING, S.CONFIRMED, S.PROCESSING, S.READY_TO_SHIP]
        assert order.version == 4

    async def test_shipped_sets_eta_and_tracking(self, db, make_order, products):
        fast = await make_order([(products["mug"], 1)])
        slow = await make_order([(products["mug"], 1)], address="12 CDA Avenue, Chattogram")

        for order, days in ((fast, 2), (slow, 4)):
            order = await walk(db, order, S.CONFIRMED, S.PROCESSING, S.READY_TO_SHIP)
            order = await OrderService.transition_order_status(db, order.id, S.SHIPPED, tracking_number="TRK-1")
            assert order.tracking_number == "TRK-1"
            assert as_utc(order.estimated_delivery_date) - as_utc(order.shipped_at) == timedelta(days=days)

    async def test_delivered_sets_timestamp(self, db, make_order, products):
        order = await make_order([(products["mug"], 1)])
        order = await walk(db, order, S.CONFIRMED, S.PROCESSING, S.READY_TO_SHIP, S.SHIPPED, S.DELIVERED)
        assert order.delivered_at is not None

    async def test_cancelled_to_shipped_is_rejected(self, db, make_order, products):
        order = await make_order([(products["mug"], 1)])
        order = await OrderService.transition_order_status(db, order.id, S.CANCELLED)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await OrderService.transition_order_status(db, order.id, S.SHIPPED)

        assert (exc_info.value.current, exc_info.value.requested) == ("cancelled", "shipped")
        unchanged = await OrderService.get_order(db, order.id)
        assert unchanged.status == S.CANCELLED
        assert unchanged.version == order.version
        assert len(unchanged.status_history) == 2

    async def test_every_illegal_pair_leaves_order_untouched(self, db, make_order, products):
        order = await make_order([(products["mug"], 1)])
        for current in OrderStatus:
            await db.execute(update(Order).where(Order.id == order.id).values(status=current))
            await db.commit()
            before = await OrderService.get_order(db, order.id)
            for target in set(OrderStatus) - ORDER_TRANSITIONS[current]:
                with pytest.raises(InvalidTransitionError):
                    await OrderService.transition_order_status(db, order.id, target)
            after = await OrderService.get_order(db, order.id)
            assert (after.status, after.version, len(after.status_history)) == \
                (current, before.version, len(before.status_history))

    async def test_unknown_order(self, db):
        with pytest.raises(NotFoundError):
            await OrderService.transition_order_status(db, 424242, S.CONFIRMED)


class TestCashOnDeliveryLedger:
    async def test_delivery_counts_once_even_when_retried(self, db, make_order, products, sales_counts):
        order = await make_order([(products["shirt"], 2), (products["mug"], 3)])
        order = await walk(db, order, S.CONFIRMED, S.PROCESSING, S.READY_TO_SHIP, S.SHIPPED, S.DELIVERED)

        assert order.sales_counted is True
        assert order.payment_status == PaymentStatus.PAID
        counts = await sales_counts()
        assert counts[products["shirt"].id] == 2
        assert counts[products["mug"].id] == 3

        with pytest.raises(InvalidTransitionError):
            await OrderService.transition_order_status(db, order.id, S.DELIVERED)
        assert await sales_counts() == counts

    async def test_not_counted_before_delivery(self, db, make_order, products, sales_counts):
        order = await make_order([(products["mug"], 1)])
        await walk(db, order, S.CONFIRMED, S.PROCESSING, S.READY_TO_SHIP, S.SHIPPED)
        assert (await sales_counts())[products["mug"].id] == 0

    async def test_return_after_delivery_decrements(self, db, make_order, products, sales_counts):
        order = await make_order([(products["mug"], 4)])
        order = await walk(db, order, S.CONFIRMED, S.PROCESSING, S.READY_TO_SHIP, S.SHIPPED, S.DELIVERED)
        order = await OrderService.transition_order_status(db, order.id, S.RETURNED, "Damaged print")

        assert order.sales_counted is False
        assert (await sales_counts())[products["mug"].id] == 0
        assert order.status_history[-1].note == "Damaged print"

    async def test_cancel_of_uncounted_order_is_a_no_op(self, db, make_order, products, sales_counts):
        order = await make_order([(products["mug"], 2)])
        await OrderService.transition_order_status(db, order.id, S.CANCELLED)
        assert (await sales_counts())[products["mug"].id] == 0


class TestReadsAndPurge:
    async def test_lookup_by_number_and_listing(self, db, make_order, products):
        first = await make_order([(products["mug"], 1)], customer_id="alice")
        await make_order([(products["mug"], 1)], customer_id="bob")

        assert (await OrderService.get_order_by_number(db, first.order_number)).id == first.id
        assert [o.customer_id for o in await OrderService.list_orders(db, customer_id="alice")] == ["alice"]
        assert len(await OrderService.list_orders(db, status=S.PENDING)) == 2

    async def test_history(self, db, make_order, products):
        order = await make_order([(products["mug"], 1)])
        await OrderService.transition_order_status(db, order.id, S.CONFIRMED, "Called customer")
        history = await OrderService.get_status_history(db, order.id)
        assert [(h.status, h.note) for h in history] == [(S.PENDING, "Order placed"), (S.CONFIRMED, "Called customer")]

    async def test_purge_uncounted_order(self, db, make_order, products):
        order = await make_order([(products["mug"], 1)])
        await OrderService.purge_order(db, order.id)
        with pytest.raises(NotFoundError):
            await OrderService.get_order(db, order.id)
        assert await OrderRepository.get_history(db, order.id) == []

    async def test_purge_refuses_counted_order(self, db, make_order, products):
        order = await make_order([(products["mug"], 1)], payment_method=PaymentMethod.CASH_ON_DELIVERY)
        order = await walk(db, order, S.CONFIRMED, S.PROCESSING, S.READY_TO_SHIP, S.SHIPPED, S.DELIVERED)
        with pytest.raises(ValidationError, match="counted in sales"):
            await OrderService.purge_order(db, order.id)
        assert (await OrderService.get_order(db, order.id)).sales_counted is True
