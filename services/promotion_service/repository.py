from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .engine import to_money
from .models import Coupon, Offer, PromotionUsage

PROMOTION_MODELS = {"coupon": Coupon, "offer": Offer}


class PromotionRepository:

    @staticmethod
    def model_for(kind: str):
        return PROMOTION_MODELS[kind]

    @staticmethod
    async def create(db: AsyncSession, promotion):
        db.add(promotion)
        await db.commit()
        await db.refresh(promotion)
        return promotion

    @staticmethod
    async def get_by_code(db: AsyncSession, code: str):
        """Coupons are searched before offers."""
        for model in (Coupon, Offer):
            result = await db.execute(
                select(model).where(model.code == code).execution_options(populate_existing=True)
            )
            promotion = result.scalars().first()
            if promotion:
                return promotion
        return None

    @staticmethod
    async def get_by_kind_and_code(db: AsyncSession, kind: str, code: str):
        model = PROMOTION_MODELS[kind]
        result = await db.execute(select(model).where(model.code == code))
        return result.scalars().first()

    @staticmethod
    async def list_active(db: AsyncSession, now: datetime, kind: Optional[str] = None):
        promotions = []
        for name, model in PROMOTION_MODELS.items():
            if kind and kind != name:
                continue
            result = await db.execute(
                select(model)
                .where(model.is_active.is_(True), model.valid_from <= now, model.valid_until >= now)
                .order_by(model.id)
            )
            promotions.extend(result.scalars().all())
        return promotions

    @staticmethod
    async def deactivate(db: AsyncSession, kind: str, promotion_id: int):
        model = PROMOTION_MODELS[kind]
        await db.execute(update(model).where(model.id == promotion_id).values(is_active=False))

    # --- Usage log and counters ---

    @staticmethod
    async def customer_usage_count(db: AsyncSession, kind: str, promotion_id: int, customer_id: str) -> int:
        """Net redemptions: every reversal row cancels one redemption."""
        result = await db.execute(
            select(func.coalesce(func.sum(case((PromotionUsage.is_reversal.is_(True), -1), else_=1)), 0))
            .where(
                PromotionUsage.promotion_kind == kind,
                PromotionUsage.promotion_id == promotion_id,
                PromotionUsage.customer_id == customer_id,
            )
        )
        return int(result.scalar_one())

    @staticmethod
    async def add_usage(db: AsyncSession, usage: PromotionUsage):
        db.add(usage)
        await db.flush()
        return usage

    @staticmethod
    async def adjust_counters(db: AsyncSession, kind: str, promotion_id: int, uses: int, amount: Decimal) -> bool:
        """
        Atomic ``+=`` on both counters. A negative adjustment that would go
        below zero matches no row and returns False; the caller clamps.
        """
        model = PROMOTION_MODELS[kind]
        stmt = update(model).where(model.id == promotion_id)
        if uses < 0 or amount < 0:
            stmt = stmt.where(
                model.total_usage_count + uses >= 0,
                model.total_discount_given + amount >= 0,
            )
        result = await db.execute(
            stmt.values(
                total_usage_count=model.total_usage_count + uses,
                total_discount_given=model.total_discount_given + amount,
            ).execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    async def clamp_counters(db: AsyncSession, kind: str, promotion_id: int, uses: int, amount: Decimal):
        model = PROMOTION_MODELS[kind]
        new_uses = model.total_usage_count + uses
        new_amount = model.total_discount_given + amount
        await db.execute(
            update(model)
            .where(model.id == promotion_id)
            .values(
                total_usage_count=case((new_uses < 0, 0), else_=new_uses),
                total_discount_given=case((new_amount < 0, 0), else_=new_amount),
            )
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    async def get_usage_count(db: AsyncSession, kind: str, promotion_id: int) -> int:
        model = PROMOTION_MODELS[kind]
        result = await db.execute(select(model.total_usage_count).where(model.id == promotion_id))
        return int(result.scalar_one())

    @staticmethod
    async def get_counters(db: AsyncSession, kind: str) -> dict[str, tuple[int, int, Decimal]]:
        """code -> (id, total_usage_count, total_discount_given)"""
        model = PROMOTION_MODELS[kind]
        result = await db.execute(select(model.code, model.id, model.total_usage_count, model.total_discount_given))
        return {code: (pid, uses, to_money(amount or 0)) for code, pid, uses, amount in result}

    @staticmethod
    async def set_counters(db: AsyncSession, kind: str, promotion_id: int, uses: int, amount: Decimal):
        model = PROMOTION_MODELS[kind]
        await db.execute(
            update(model)
            .where(model.id == promotion_id)
            .values(total_usage_count=uses, total_discount_given=amount)
        )
