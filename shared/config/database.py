from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from .settings import DATABASE_URL, DB_ECHO

engine = create_async_engine(DATABASE_URL, echo=DB_ECHO, pool_pre_ping=True)

AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)

Base = declarative_base()

# Every service keeps its tables in its own schema
SERVICE_SCHEMAS = (
    "product_schema",
    "promotion_schema",
    "order_schema",
    "payment_schema",
)


async def get_db():
    async with AsyncSessionLocal() as session:
        yield session


async def create_schemas_and_tables():
    """Startup hook: the services share one metadata, so create every schema first."""
    async with engine.begin() as conn:
        for schema in SERVICE_SCHEMAS:
            await conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {schema}"))
        await conn.run_sync(Base.metadata.create_all)
