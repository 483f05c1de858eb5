from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Product

class ProductRepository:

    @staticmethod
    async def create_product(db: AsyncSession, product: Product):
        db.add(product)
        await db.commit()
        await db.refresh(product)
        return product

    @staticmethod
    async def get_all_products(
        db: AsyncSession,
        category: Optional[str] = None,
        seller_id: Optional[str] = None,
        best_selling: bool = False,
    ):
        order = (Product.sales_count.desc(), Product.id) if best_selling else (Product.id,)
        stmt = select(Product).order_by(*order)
        if category:
            stmt = stmt.where(Product.category == category)
        if seller_id:
            stmt = stmt.where(Product.seller_id == seller_id)
        result = await db.execute(stmt)
        return result.scalars().all()

    @staticmethod
    async def get_product_by_id(db: AsyncSession, product_id: int):
        result = await db.execute(select(Product).where(Product.id == product_id))
        return result.scalars().first()

    @staticmethod
    async def get_products_by_ids(db: AsyncSession, product_ids: Iterable[int]) -> dict[int, Product]:
        ids = set(product_ids)
        if not ids:
            return {}
        result = await db.execute(select(Product).where(Product.id.in_(ids)))
        return {p.id: p for p in result.scalars().all()}

    # --- Sales counters: store-side arithmetic only, never read-modify-write ---

    @staticmethod
    async def increment_sales(db: AsyncSession, product_id: int, quantity: int) -> bool:
        result = await db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(sales_count=Product.sales_count + quantity)
        )
        return result.rowcount == 1

    @staticmethod
    async def decrement_sales(db: AsyncSession, product_id: int, quantity: int) -> bool:
        """Decrement only when it cannot underflow. False means nothing matched."""
        result = await db.execute(
            update(Product)
            .where(Product.id == product_id, Product.sales_count >= quantity)
            .values(sales_count=Product.sales_count - quantity)
        )
        return result.rowcount == 1

    @staticmethod
    async def clamp_sales_to_zero(db: AsyncSession, product_id: int, quantity: int) -> bool:
        result = await db.execute(
            update(Product)
            .where(Product.id == product_id, Product.sales_count < quantity)
            .values(sales_count=0)
        )
        return result.rowcount == 1

    @staticmethod
    async def get_sales_counts(db: AsyncSession) -> dict[int, int]:
        result = await db.execute(select(Product.id, Product.sales_count))
        return {row.id: row.sales_count for row in result}

    @staticmethod
    async def set_sales_count(db: AsyncSession, product_id: int, sales_count: int):
        await db.execute(
            update(Product).where(Product.id == product_id).values(sales_count=sales_count)
        )
