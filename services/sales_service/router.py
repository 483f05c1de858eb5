from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import get_db
from shared.security.dependencies import verify_internal_api_key
from services.product_service.repository import ProductRepository
from .ledger import recalculate_sales_ledger
from .schemas import ProductSales, RecalculationResult

router = APIRouter(dependencies=[Depends(verify_internal_api_key)])
public_router = APIRouter()

@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "sales", "status": "running"}


# Drift repair; safe to trigger while orders are being processed
@router.post("/recalculate", response_model=RecalculationResult)
async def recalculate(db: AsyncSession = Depends(get_db)):
    return await recalculate_sales_ledger(db)

@router.get("/products", response_model=list[ProductSales])
async def product_sales(db: AsyncSession = Depends(get_db)):
    products = await ProductRepository.get_all_products(db, best_selling=True)
    return [ProductSales(product_id=p.id, name=p.name, sales_count=p.sales_count) for p in products]
