from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import get_db
from shared.security.dependencies import get_current_customer, verify_internal_api_key
from .schemas import (
    CouponCreate,
    OfferCreate,
    PromotionResponse,
    ValidateRequest,
    ValidateResponse,
)
from .service import PromotionService

# Administration is internal; validation is done on behalf of a signed-in customer
router = APIRouter(dependencies=[Depends(verify_internal_api_key)])
customer_router = APIRouter()
public_router = APIRouter()

@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "promotion", "status": "running"}


@customer_router.post("/validate", response_model=ValidateResponse)
async def validate_code(
    payload: ValidateRequest,
    customer_id: str = Depends(get_current_customer),
    db: AsyncSession = Depends(get_db)
):
    snapshot = PromotionService.snapshot_from_request(payload)
    promotion, result = await PromotionService.validate_coupon(db, payload.code, snapshot, customer_id)
    return ValidateResponse(
        valid=result.valid,
        code=promotion.code,
        kind=promotion.kind,
        reason=result.reason,
        discount=result.discount,
    )

@router.post("/coupons", response_model=PromotionResponse, status_code=201)
async def create_coupon(data: CouponCreate, db: AsyncSession = Depends(get_db)):
    return await PromotionService.create_coupon(db, data)

@router.post("/offers", response_model=PromotionResponse, status_code=201)
async def create_offer(data: OfferCreate, db: AsyncSession = Depends(get_db)):
    return await PromotionService.create_offer(db, data)

@router.get("/", response_model=list[PromotionResponse])
async def list_active(
    kind: str | None = Query(default=None, pattern="^(coupon|offer)$"),
    db: AsyncSession = Depends(get_db)
):
    return await PromotionService.list_active_promotions(db, kind)

@router.get("/{code}", response_model=PromotionResponse)
async def get_promotion(code: str, db: AsyncSession = Depends(get_db)):
    return await PromotionService.get_promotion(db, code)

@router.patch("/{code}/deactivate", response_model=PromotionResponse)
async def deactivate_promotion(code: str, db: AsyncSession = Depends(get_db)):
    return await PromotionService.deactivate_promotion(db, code)
