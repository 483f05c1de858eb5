"""Tests for the checkout saga and its compensations."""

import pytest
from structlog.testing import capture_logs

from shared.errors import GatewayError, ValidationError
from services.order_service.service import OrderService
from services.order_service.state_machine import OrderStatus, PaymentMethod, PaymentStatus
from services.orchestrator.checkout_saga import checkout
from services.orchestrator.saga import SagaOrchestrator
from services.payment_service.gateway import SimulatedGatewayClient


class DownGateway(SimulatedGatewayClient):
    async def initiate_payment(self, order):
        raise GatewayError()


class TestCheckout:
    async def test_online_checkout_opens_gateway_payment(self, db, payload_for, products):
        payload = payload_for([(products["shirt"], 1)], payment_method=PaymentMethod.CARD)

        result = await checkout(db, "customer-1", payload, SimulatedGatewayClient())

        order, payment = result["order"], result["payment"]
        assert payment.order_id == order.id
        assert payment.amount == order.total_amount
        assert order.payment_status == PaymentStatus.PROCESSING
        assert order.gateway_payment_id == payment.gateway_payment_id

    async def test_cod_checkout_skips_payment(self, db, payload_for, products):
        payload = payload_for([(products["mug"], 1)])

        result = await checkout(db, "customer-1", payload, SimulatedGatewayClient())

        assert result["payment"] is None
        assert result["order"].status == OrderStatus.PENDING

    async def test_gateway_failure_cancels_order(self, db, payload_for, products, sales_counts):
        payload = payload_for([(products["mug"], 2)], payment_method=PaymentMethod.CARD)

        with capture_logs() as logs:
            with pytest.raises(GatewayError):
                await checkout(db, "customer-1", payload, DownGateway())

        [order] = await OrderService.list_orders(db, customer_id="customer-1")
        assert order.status == OrderStatus.CANCELLED
        assert order.payment_status == PaymentStatus.PENDING
        assert order.status_history[-1].note == "Checkout failed: payment could not be started"
        assert (await sales_counts())[products["mug"].id] == 0
        assert "saga_compensated" in [e["event"] for e in logs]

    async def test_invalid_order_compensates_nothing(self, db, payload_for, products):
        payload = payload_for([(products["mug"], 1)], promo_code="NOSUCHCODE")

        with pytest.raises(ValidationError, match="Invalid promo code"):
            await checkout(db, "customer-1", payload, SimulatedGatewayClient())

        assert await OrderService.list_orders(db) == []


class TestSagaOrchestrator:
    async def test_compensations_run_in_reverse(self):
        calls = []

        async def step(name):
            calls.append(name)

        async def boom(ctx):
            raise RuntimeError("step three failed")

        saga = SagaOrchestrator()
        saga.add_step("one", lambda ctx: step("one"), lambda ctx: step("undo-one"))
        saga.add_step("two", lambda ctx: step("two"), lambda ctx: step("undo-two"))
        saga.add_step("three", boom, lambda ctx: step("undo-three"))

        with pytest.raises(RuntimeError):
            await saga.execute({})

        assert calls == ["one", "two", "undo-two", "undo-one"]

    async def test_failing_compensation_does_not_block_others(self):
        calls = []

        async def ok(ctx):
            calls.append("ok")

        async def broken_undo(ctx):
            raise RuntimeError("undo failed")

        async def undo(ctx):
            calls.append("undo-first")

        async def fail(ctx):
            raise ValueError("nope")

        saga = SagaOrchestrator()
        saga.add_step("first", ok, undo).add_step("second", ok, broken_undo).add_step("third", fail)

        with capture_logs() as logs:
            with pytest.raises(ValueError):
                await saga.execute({})

        assert calls == ["ok", "ok", "undo-first"]
        critical = [e for e in logs if e["event"] == "saga_compensation_failed"]
        assert critical and critical[0]["step"] == "second"
        assert critical[0]["log_level"] == "critical"

    async def test_success_returns_context(self):
        async def put(ctx):
            ctx["done"] = True

        ctx = await SagaOrchestrator().add_step("put", put).execute({"start": 1})
        assert ctx == {"start": 1, "done": True}
