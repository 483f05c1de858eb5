"""
Payment Reconciler and the payment operations around it.

Every write is a single conditional update keyed on the order version and the
payment status read at the start of the attempt. A duplicate or concurrent
callback either loses the race and re-reads (ConflictRetry) or sees the
settled snapshot and is acknowledged as a replay without side effects.
"""
import uuid
from datetime import timedelta
from decimal import Decimal

import structlog
from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import settings
from shared.errors import InvalidTransitionError, NotFoundError, ValidationError
from shared.observability import ledger_order_transitions_total, ledger_payment_callbacks_total
from shared.retry import retry_ledger_operation
from shared.timeutils import as_utc, utc_now
from services.notification_service.dispatcher import notifier
from services.order_service.repository import OrderRepository
from services.order_service.state_machine import (
    CAPTURED_PAYMENT_STATUSES,
    REVERSAL_STATUSES,
    SETTLED_PAYMENT_STATUSES,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    can_transition,
    ensure_payment_transition,
)
from services.promotion_service.engine import to_money
from services.sales_service.ledger import sync_ledger
from .gateway import GatewayClient, get_gateway
from .repository import PaymentRepository
from .schemas import GatewayCallback, InitiateResponse, ReconcileResult, RefundResponse

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

APPLIED = "applied"
REPLAYED = "replayed"
REJECTED = "rejected"


def _result(order, accepted: bool, disposition: str) -> ReconcileResult:
    return ReconcileResult(
        accepted=accepted,
        order_id=order.id,
        order_number=order.order_number,
        payment_status=order.payment_status,
        replayed=disposition == REPLAYED,
        disposition=disposition,
    )


class PaymentService:

    # --- Reconciliation ---

    @staticmethod
    async def reconcile_payment(
        db: AsyncSession,
        callback: GatewayCallback,
        gateway: GatewayClient | None = None,
    ) -> ReconcileResult:
        gateway = gateway or get_gateway()
        # Verified before any write so no store work waits on the gateway
        if not await gateway.verify_callback(callback):
            await PaymentService._reject(
                db, callback, callback.order_id, "unverified",
                ValidationError("Payment callback could not be verified"),
            )
        return await PaymentService._reconcile(db, callback)

    @staticmethod
    async def _find_order(db: AsyncSession, callback: GatewayCallback):
        if callback.order_id is not None:
            return await OrderRepository.get_order(db, callback.order_id)
        return await OrderRepository.get_order_by_gateway_payment_id(db, callback.gateway_payment_id)

    @staticmethod
    async def _reject(db: AsyncSession, callback: GatewayCallback, order_id, detail: str, error: Exception):
        """Keep an audit row for a refused callback, then surface the error."""
        await PaymentRepository.record_callback(db, callback, order_id, REJECTED, detail)
        await db.commit()
        ledger_payment_callbacks_total.labels(outcome=callback.outcome, disposition=REJECTED).inc()
        logger.warning("payment_callback_rejected", order_id=order_id, outcome=callback.outcome, detail=detail)
        raise error

    @staticmethod
    @retry_ledger_operation()
    async def _reconcile(db: AsyncSession, callback: GatewayCallback) -> ReconcileResult:
        with tracer.start_as_current_span("payment.reconcile") as span:
            span.set_attribute("payment.outcome", callback.outcome)

            order = await PaymentService._find_order(db, callback)
            if not order:
                key = callback.order_id if callback.order_id is not None else callback.gateway_payment_id
                await PaymentService._reject(db, callback, None, "order_not_found", NotFoundError("Order", key))
            span.set_attribute("order.id", order.id)

            if not PaymentMethod(order.payment_method).is_online:
                await PaymentService._reject(
                    db, callback, order.id, "cash_on_delivery",
                    ValidationError("Cash on delivery orders do not accept gateway callbacks"),
                )

            # Idempotency guard: everything below is decided from this snapshot
            snapshot = PaymentStatus(order.payment_status)
            if callback.outcome == "success":
                return await PaymentService._apply_success(db, callback, order, snapshot)
            return await PaymentService._apply_failure(db, callback, order, snapshot)

    @staticmethod
    async def _replay(db: AsyncSession, callback: GatewayCallback, order) -> ReconcileResult:
        await PaymentRepository.record_callback(db, callback, order.id, REPLAYED)
        await db.commit()
        ledger_payment_callbacks_total.labels(outcome=callback.outcome, disposition=REPLAYED).inc()
        logger.info(
            "payment_replayed",
            order_id=order.id,
            outcome=callback.outcome,
            payment_status=PaymentStatus(order.payment_status).value,
            transaction_id=callback.transaction_id,
        )
        return _result(order, accepted=True, disposition=REPLAYED)

    @staticmethod
    async def _apply_success(db: AsyncSession, callback: GatewayCallback, order, snapshot: PaymentStatus):
        if snapshot in SETTLED_PAYMENT_STATUSES:
            return await PaymentService._replay(db, callback, order)
        # A capture reported after a failure reopens the payment and settles it in the same write
        recovered = snapshot == PaymentStatus.FAILED
        path = (PaymentStatus.PENDING, PaymentStatus.PAID) if recovered else (PaymentStatus.PAID,)
        try:
            current = snapshot
            for step in path:
                ensure_payment_transition(current, step)
                current = step
        except InvalidTransitionError as e:
            await PaymentService._reject(db, callback, order.id, "illegal_transition", e)

        status = OrderStatus(order.status)
        values = {
            "payment_status": PaymentStatus.PAID,
            "transaction_id": callback.transaction_id,
            "payment_date": utc_now(),
        }
        if callback.gateway_payment_id and not order.gateway_payment_id:
            values["gateway_payment_id"] = callback.gateway_payment_id
        if recovered:
            values["payment_failed_at"] = None
        confirm = status == OrderStatus.PENDING
        if confirm:
            values["status"] = OrderStatus.CONFIRMED
        late = status in REVERSAL_STATUSES
        if late:
            # Money arrived for an order that no longer exists; it stays out of the ledger
            values["requires_manual_processing"] = True

        await OrderRepository.compare_and_set(db, order.id, order.version, values, expected_payment_status=snapshot)
        if confirm:
            await OrderRepository.append_history(db, order.id, OrderStatus.CONFIRMED, "Payment received")

        order = await OrderRepository.get_order(db, order.id)
        await sync_ledger(db, order)
        await PaymentRepository.record_callback(db, callback, order.id, APPLIED)
        await db.commit()

        ledger_payment_callbacks_total.labels(outcome=callback.outcome, disposition=APPLIED).inc()
        if confirm:
            ledger_order_transitions_total.labels(
                from_status=OrderStatus.PENDING.value, to_status=OrderStatus.CONFIRMED.value
            ).inc()
        if recovered:
            logger.warning(
                "payment_recovered_after_failure",
                order_id=order.id,
                transaction_id=callback.transaction_id,
            )
        if late:
            logger.warning(
                "payment_after_cancellation",
                order_id=order.id,
                status=status.value,
                transaction_id=callback.transaction_id,
                action="manual_refund_required",
            )
        logger.info(
            "payment_captured",
            order_id=order.id,
            previous_status=snapshot.value,
            transaction_id=callback.transaction_id,
            sales_counted=order.sales_counted,
        )
        notifier.payment_status_changed(order)
        return _result(order, accepted=True, disposition=APPLIED)

    @staticmethod
    async def _apply_failure(db: AsyncSession, callback: GatewayCallback, order, snapshot: PaymentStatus):
        if snapshot == PaymentStatus.FAILED:
            return await PaymentService._replay(db, callback, order)
        if snapshot in SETTLED_PAYMENT_STATUSES:
            # A failure report cannot undo a captured payment
            await PaymentRepository.record_callback(db, callback, order.id, REJECTED, "already_settled")
            await db.commit()
            ledger_payment_callbacks_total.labels(outcome=callback.outcome, disposition=REJECTED).inc()
            logger.warning(
                "payment_failure_after_capture",
                order_id=order.id,
                payment_status=snapshot.value,
                transaction_id=callback.transaction_id,
            )
            return _result(order, accepted=False, disposition=REJECTED)

        ensure_payment_transition(snapshot, PaymentStatus.FAILED)
        await OrderRepository.compare_and_set(
            db,
            order.id,
            order.version,
            {"payment_status": PaymentStatus.FAILED, "payment_failed_at": utc_now()},
            expected_payment_status=snapshot,
        )
        await PaymentRepository.record_callback(db, callback, order.id, APPLIED)
        await db.commit()

        order = await OrderRepository.get_order(db, order.id)
        ledger_payment_callbacks_total.labels(outcome=callback.outcome, disposition=APPLIED).inc()
        logger.info("payment_failed", order_id=order.id, previous_status=snapshot.value)
        notifier.payment_status_changed(order)
        return _result(order, accepted=True, disposition=APPLIED)

    # --- Initiation and retry ---

    @staticmethod
    async def _load_online_order(db: AsyncSession, order_id: int):
        order = await OrderRepository.get_order(db, order_id)
        if not order:
            raise NotFoundError("Order", order_id)
        if not PaymentMethod(order.payment_method).is_online:
            raise ValidationError("Cash on delivery orders are paid on delivery")
        return order

    @staticmethod
    async def initiate_payment(db: AsyncSession, order_id: int, gateway: GatewayClient | None = None) -> InitiateResponse:
        gateway = gateway or get_gateway()
        order = await PaymentService._load_online_order(db, order_id)
        if OrderStatus(order.status) in REVERSAL_STATUSES:
            raise ValidationError(f"Order {order.order_number} is {OrderStatus(order.status).value}")
        ensure_payment_transition(order.payment_status, PaymentStatus.PROCESSING)

        payment = await gateway.initiate_payment(order)
        order = await PaymentService._store_gateway_payment(db, order_id, payment.payment_id)
        return InitiateResponse(
            order_id=order.id,
            order_number=order.order_number,
            gateway_payment_id=payment.payment_id,
            redirect_url=payment.redirect_url,
            payment_status=order.payment_status,
            amount=order.total_amount,
        )

    @staticmethod
    @retry_ledger_operation()
    async def _store_gateway_payment(db: AsyncSession, order_id: int, gateway_payment_id: str):
        order = await PaymentService._load_online_order(db, order_id)
        snapshot = PaymentStatus(order.payment_status)
        ensure_payment_transition(snapshot, PaymentStatus.PROCESSING)
        await OrderRepository.compare_and_set(
            db,
            order.id,
            order.version,
            {"payment_status": PaymentStatus.PROCESSING, "gateway_payment_id": gateway_payment_id},
            expected_payment_status=snapshot,
        )
        await db.commit()
        logger.info("payment_initiated", order_id=order.id, gateway_payment_id=gateway_payment_id)
        return await OrderRepository.get_order(db, order.id)

    @staticmethod
    @retry_ledger_operation()
    async def retry_payment(db: AsyncSession, order_id: int):
        """failed -> pending, so the customer can pay again."""
        order = await PaymentService._load_online_order(db, order_id)
        snapshot = PaymentStatus(order.payment_status)
        ensure_payment_transition(snapshot, PaymentStatus.PENDING)
        await OrderRepository.compare_and_set(
            db,
            order.id,
            order.version,
            {"payment_status": PaymentStatus.PENDING, "gateway_payment_id": None, "payment_failed_at": None},
            expected_payment_status=snapshot,
        )
        await db.commit()
        logger.info("payment_retry_opened", order_id=order.id)
        return await OrderRepository.get_order(db, order.id)

    # --- Refunds ---

    @staticmethod
    def _refundable_amount(order, amount: Decimal | None) -> Decimal:
        status = PaymentStatus(order.payment_status)
        if status == PaymentStatus.REFUNDED:
            raise ValidationError("Order has already been refunded")
        if status not in CAPTURED_PAYMENT_STATUSES:
            raise ValidationError("Only paid orders can be refunded")

        window = settings.REFUND_WINDOW_DAYS
        if utc_now() - as_utc(order.created_at) > timedelta(days=window):
            raise ValidationError(
                f"Refund period has expired. Orders can only be refunded within {window} days."
            )

        remaining = to_money(order.total_amount) - to_money(order.refund_amount or 0)
        amount = to_money(amount) if amount is not None else remaining
        if amount <= 0:
            raise ValidationError("Refund amount must be positive")
        if amount > remaining:
            raise ValidationError(f"Refund amount exceeds the refundable balance of {remaining}")
        return amount

    @staticmethod
    async def refund_payment(
        db: AsyncSession,
        order_id: int,
        reason: str,
        amount: Decimal | None = None,
        gateway: GatewayClient | None = None,
    ) -> RefundResponse:
        order = await OrderRepository.get_order(db, order_id)
        if not order:
            raise NotFoundError("Order", order_id)
        amount = PaymentService._refundable_amount(order, amount)
        snapshot = PaymentStatus(order.payment_status)

        if PaymentMethod(order.payment_method).is_online:
            gateway = gateway or get_gateway()
            refund = await gateway.refund(order, amount, reason)
            refund_id, manual = refund.refund_id, False
        else:
            # Cash goes back by hand; the order is flagged for the operator
            refund_id, manual = f"MANUAL-{uuid.uuid4().hex[:12].upper()}", True

        return await PaymentService._apply_refund(db, order_id, snapshot, refund_id, amount, reason, manual)

    @staticmethod
    @retry_ledger_operation()
    async def _apply_refund(
        db: AsyncSession,
        order_id: int,
        snapshot: PaymentStatus,
        refund_id: str,
        amount: Decimal,
        reason: str,
        manual: bool,
    ) -> RefundResponse:
        with tracer.start_as_current_span("payment.refund") as span:
            span.set_attribute("order.id", order_id)
            order = await OrderRepository.get_order(db, order_id)
            if PaymentStatus(order.payment_status) != snapshot:
                logger.error(
                    "refund_state_changed",
                    order_id=order_id,
                    expected=snapshot.value,
                    found=PaymentStatus(order.payment_status).value,
                    refund_id=refund_id,
                )
                raise ValidationError("Order payment changed while the refund was processed; manual review required")

            refunded_total = to_money(order.refund_amount or 0) + amount
            full = refunded_total >= to_money(order.total_amount)
            target_payment = PaymentStatus.REFUNDED if full else PaymentStatus.PARTIALLY_REFUNDED
            ensure_payment_transition(snapshot, target_payment)

            values = {
                "payment_status": target_payment,
                "refund_id": refund_id,
                "refund_date": utc_now(),
                "refund_amount": refunded_total,
                "refund_reason": reason,
                "requires_manual_processing": manual or order.requires_manual_processing,
            }
            status = OrderStatus(order.status)
            target_status = None
            if full:
                target_status = OrderStatus.RETURNED \
                    if status in (OrderStatus.DELIVERED, OrderStatus.OUT_FOR_DELIVERY) else OrderStatus.CANCELLED
                if can_transition(status, target_status):
                    values["status"] = target_status
                else:
                    target_status = None

            await OrderRepository.compare_and_set(db, order.id, order.version, values, expected_payment_status=snapshot)
            if target_status:
                await OrderRepository.append_history(db, order.id, target_status, f"Refunded: {reason}")

            order = await OrderRepository.get_order(db, order.id)
            await sync_ledger(db, order)
            await db.commit()

        if target_status:
            ledger_order_transitions_total.labels(from_status=status.value, to_status=target_status.value).inc()
            notifier.order_status_changed(order, target_status)
        logger.info(
            "payment_refunded",
            order_id=order.id,
            refund_id=refund_id,
            amount=str(amount),
            full=full,
            requires_manual_processing=order.requires_manual_processing,
        )
        return RefundResponse(
            order_id=order.id,
            order_number=order.order_number,
            refund_id=refund_id,
            refund_amount=order.refund_amount,
            payment_status=order.payment_status,
            requires_manual_processing=order.requires_manual_processing,
        )

    @staticmethod
    async def get_callbacks(db: AsyncSession, order_id: int):
        return await PaymentRepository.get_callbacks(db, order_id)
