from decimal import Decimal

import structlog
from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession

from shared.errors import NotFoundError, ValidationError
from shared.observability import ledger_discount_validations_total, ledger_drift_total
from shared.timeutils import utc_now
from . import engine
from .engine import OrderSnapshot, SnapshotItem, ValidationResult
from .models import Coupon, Offer, PromotionUsage
from .repository import PromotionRepository
from .schemas import CouponCreate, OfferCreate, ValidateRequest

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)


class PromotionService:

    @staticmethod
    async def _create(db: AsyncSession, model, data):
        if await PromotionRepository.get_by_code(db, data.code):
            raise ValidationError(f"Promotion code already exists: {data.code}")
        promotion = model(**data.model_dump())
        promotion = await PromotionRepository.create(db, promotion)
        logger.info("promotion_created", kind=promotion.kind, code=promotion.code)
        return promotion

    @staticmethod
    async def create_coupon(db: AsyncSession, data: CouponCreate) -> Coupon:
        return await PromotionService._create(db, Coupon, data)

    @staticmethod
    async def create_offer(db: AsyncSession, data: OfferCreate) -> Offer:
        return await PromotionService._create(db, Offer, data)

    @staticmethod
    async def get_promotion(db: AsyncSession, code: str):
        code = engine.normalize_code(code)
        promotion = await PromotionRepository.get_by_code(db, code)
        if not promotion:
            raise NotFoundError("Promotion", code)
        return promotion

    @staticmethod
    async def deactivate_promotion(db: AsyncSession, code: str):
        promotion = await PromotionService.get_promotion(db, code)
        await PromotionRepository.deactivate(db, promotion.kind, promotion.id)
        await db.commit()
        logger.info("promotion_deactivated", kind=promotion.kind, code=promotion.code)
        return await PromotionService.get_promotion(db, code)

    @staticmethod
    async def list_active_promotions(db: AsyncSession, kind: str | None = None):
        return await PromotionRepository.list_active(db, utc_now(), kind)

    # --- Validation ---

    @staticmethod
    async def evaluate(db: AsyncSession, promotion, snapshot: OrderSnapshot, customer_id: str) -> ValidationResult:
        """Validate an already loaded rule for one customer."""
        with tracer.start_as_current_span("promotion.validate") as span:
            span.set_attribute("promotion.code", promotion.code)
            usage = await PromotionRepository.customer_usage_count(db, promotion.kind, promotion.id, customer_id)
            result = engine.validate(promotion, snapshot, customer_id, usage)
            span.set_attribute("promotion.valid", result.valid)

        ledger_discount_validations_total.labels(result=result.check).inc()
        if not result.valid:
            logger.info(
                "promotion_rejected",
                code=promotion.code,
                customer_id=customer_id,
                reason=result.reason,
            )
        return result

    @staticmethod
    async def validate_coupon(db: AsyncSession, code: str, snapshot: OrderSnapshot, customer_id: str):
        """Returns (promotion, result). Unknown codes raise NotFoundError."""
        promotion = await PromotionService.get_promotion(db, code)
        result = await PromotionService.evaluate(db, promotion, snapshot, customer_id)
        return promotion, result

    @staticmethod
    def snapshot_from_request(data: ValidateRequest) -> OrderSnapshot:
        items = tuple(
            SnapshotItem(
                product_id=item.product_id,
                quantity=item.quantity,
                line_total=engine.to_money(item.line_total),
                category=item.category,
            )
            for item in data.items
        )
        subtotal = data.subtotal if data.subtotal is not None else sum((i.line_total for i in items), Decimal("0"))
        return OrderSnapshot(subtotal=engine.to_money(subtotal), items=items)

    # --- Redemption (called by the sales ledger inside its transaction) ---

    @staticmethod
    async def _log_usage(db: AsyncSession, order, reversal: bool, adjust: bool = True):
        """
        Append a usage row and, unless ``adjust`` is False, move the counters
        with it. Recalculation passes ``adjust=False`` because it rewrites the
        counters itself.
        """
        promotion = await PromotionRepository.get_by_kind_and_code(db, order.promo_kind, order.promo_code)
        if not promotion:
            logger.warning(
                "promotion_missing_for_order",
                order_id=order.id,
                code=order.promo_code,
                kind=order.promo_kind,
            )
            return None

        discount = engine.to_money(order.discount_amount)
        await PromotionRepository.add_usage(
            db,
            PromotionUsage(
                promotion_kind=promotion.kind,
                promotion_id=promotion.id,
                order_id=order.id,
                customer_id=order.customer_id,
                discount_amount=discount,
                order_amount=engine.to_money(order.subtotal),
                is_reversal=reversal,
                used_at=utc_now(),
            ),
        )
        if not adjust:
            return promotion

        sign = -1 if reversal else 1
        if not await PromotionRepository.adjust_counters(db, promotion.kind, promotion.id, sign, sign * discount):
            await PromotionRepository.clamp_counters(db, promotion.kind, promotion.id, sign, sign * discount)
            ledger_drift_total.labels(source="clamp").inc()
            logger.warning(
                "ledger_drift",
                source="clamp",
                order_id=order.id,
                promotion_kind=promotion.kind,
                promotion_id=promotion.id,
                discount=str(discount),
            )
        return promotion

    @staticmethod
    async def record_usage(db: AsyncSession, order):
        promotion = await PromotionService._log_usage(db, order, reversal=False)
        if promotion is None:
            return
        # Validation happened at checkout; a cap can still be passed by orders paid later
        if promotion.max_total_uses is not None:
            uses = await PromotionRepository.get_usage_count(db, promotion.kind, promotion.id)
            if uses > promotion.max_total_uses:
                logger.warning(
                    "promotion_cap_exceeded",
                    code=promotion.code,
                    max_total_uses=promotion.max_total_uses,
                    total_usage_count=uses,
                    order_id=order.id,
                )
        logger.info("promotion_redeemed", code=promotion.code, order_id=order.id, discount=str(order.discount_amount))

    @staticmethod
    async def record_reversal(db: AsyncSession, order):
        promotion = await PromotionService._log_usage(db, order, reversal=True)
        if promotion is not None:
            logger.info("promotion_reversed", code=promotion.code, order_id=order.id)

    @staticmethod
    async def log_realigned_order(db: AsyncSession, order, counted: bool):
        """Usage row for an order whose ledger guard was realigned by recalculation."""
        promotion = await PromotionService._log_usage(db, order, reversal=not counted, adjust=False)
        if promotion is not None:
            logger.warning(
                "promotion_usage_realigned",
                code=promotion.code,
                order_id=order.id,
                reversal=not counted,
            )
