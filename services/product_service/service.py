from sqlalchemy.ext.asyncio import AsyncSession

from shared.errors import NotFoundError
from .models import Product
from .repository import ProductRepository
from .schemas import ProductCreate

class ProductService:

    @staticmethod
    async def create_product(db: AsyncSession, data: ProductCreate):
        product = Product(
            name=data.name,
            seller_id=data.seller_id,
            category=data.category,
            price=data.price,
            offer_price=data.offer_price,
            colors=data.colors,
            sizes=data.sizes,
            stock=data.stock,
            sales_count=0,
        )
        return await ProductRepository.create_product(db, product)

    @staticmethod
    async def list_products(
        db: AsyncSession,
        category: str | None = None,
        seller_id: str | None = None,
        best_selling: bool = False,
    ):
        return await ProductRepository.get_all_products(db, category, seller_id, best_selling)

    @staticmethod
    async def get_product_by_id(db: AsyncSession, product_id: int):
        product = await ProductRepository.get_product_by_id(db, product_id)
        if not product:
            raise NotFoundError("Product", product_id)
        return product
