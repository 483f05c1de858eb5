from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.timeutils import utc_now
from .models import PaymentCallback

class PaymentRepository:
    @staticmethod
    async def record_callback(db: AsyncSession, callback, order_id, disposition: str, detail: str | None = None):
        entry = PaymentCallback(
            order_id=order_id,
            gateway_payment_id=callback.gateway_payment_id,
            outcome=callback.outcome,
            transaction_id=callback.transaction_id,
            disposition=disposition,
            detail=detail,
            payload=callback.payload,
            received_at=utc_now(),
        )
        db.add(entry)
        await db.flush()
        return entry

    @staticmethod
    async def get_callbacks(db: AsyncSession, order_id: int):
        result = await db.execute(
            select(PaymentCallback).where(PaymentCallback.order_id == order_id).order_by(PaymentCallback.id)
        )
        return result.scalars().all()
