"""Pytest fixtures: a throwaway SQLite ledger per test and an in-process API client."""

import os

# Must be set before any application module reads the environment
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("OTEL_ENABLED", "false")
os.environ.setdefault("INTERNAL_API_KEY", "test-internal-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ["NOTIFICATION_WEBHOOK_URL"] = ""
os.environ["PAYMENT_GATEWAY_URL"] = ""

from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from shared.config import settings
from shared.config.database import Base, SERVICE_SCHEMAS, get_db
from shared.errors import register_exception_handlers
from shared.security import create_access_token, limiter
from shared.timeutils import utc_now
from services.order_service.schemas import DeliveryInfo, OrderCreate, OrderItemCreate
from services.order_service.service import OrderService
from services.order_service.state_machine import PaymentMethod
from services.payment_service.gateway import SimulatedGatewayClient, get_gateway
from services.payment_service.models import PaymentCallback  # noqa: F401
from services.product_service.models import Product
from services.product_service.repository import ProductRepository
from services.promotion_service.models import Coupon


API_KEY_HEADERS = {"X-Internal-API-Key": "test-internal-key"}


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    """No real backoff sleeps in tests."""
    monkeypatch.setattr(settings, "LEDGER_RETRY_BASE_DELAY", 0.0)
    monkeypatch.setattr(settings, "LEDGER_RETRY_MAX_DELAY", 0.0)


@pytest.fixture
async def engine(tmp_path):
    # SQLite has no schemas: flatten every service schema into the main database
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        execution_options={"schema_translate_map": {schema: None for schema in SERVICE_SCHEMAS}},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def products(db):
    """Two catalogue products; the shirt sells at its offer price."""
    shirt = Product(
        name="Graphic Tee",
        category="tshirts",
        price=Decimal("600.00"),
        offer_price=Decimal("500.00"),
        colors=["black", "white"],
        sizes=["M", "L"],
        stock=100,
        sales_count=0,
    )
    mug = Product(
        name="Printed Mug",
        category="mugs",
        price=Decimal("250.00"),
        colors=[],
        sizes=[],
        stock=50,
        sales_count=0,
    )
    db.add_all([shirt, mug])
    await db.commit()
    return {"shirt": shirt, "mug": mug}


@pytest.fixture
def make_coupon(db):
    async def _make(code="SAVE10", **overrides):
        now = utc_now()
        fields = dict(
            code=code,
            seller_id="seller-1",
            name=f"{code} promotion",
            discount_type="percentage",
            discount_value=Decimal("10"),
            minimum_order_amount=Decimal("0"),
            max_uses_per_customer=None,
            applicable_products=[],
            excluded_products=[],
            applicable_categories=[],
            valid_from=now - timedelta(days=30),
            valid_until=now + timedelta(days=30),
            is_active=True,
            total_usage_count=0,
            total_discount_given=Decimal("0"),
        )
        fields.update(overrides)
        coupon = Coupon(**fields)
        db.add(coupon)
        await db.commit()
        return coupon
    return _make


def order_payload(lines, payment_method=PaymentMethod.CASH_ON_DELIVERY, promo_code=None,
                  address="House 12, Road 5, Dhanmondi, Dhaka"):
    return OrderCreate(
        items=[OrderItemCreate(product_id=product.id, quantity=qty) for product, qty in lines],
        delivery_info=DeliveryInfo(
            customer_name="Rahim Uddin",
            customer_phone="01700000000",
            customer_email="rahim@example.com",
            address=address,
        ),
        payment_method=payment_method,
        promo_code=promo_code,
    )


@pytest.fixture
def make_order(db):
    async def _make(lines, payment_method=PaymentMethod.CASH_ON_DELIVERY, promo_code=None,
                    customer_id="customer-1", **kwargs):
        payload = order_payload(lines, payment_method, promo_code, **kwargs)
        return await OrderService.create_order(db, customer_id, payload)
    return _make


@pytest.fixture
def payload_for():
    return order_payload


@pytest.fixture
def sales_counts(db):
    """Current sales counter per product id."""
    async def _counts() -> dict[int, int]:
        return await ProductRepository.get_sales_counts(db)
    return _counts


@pytest.fixture
async def client(session_factory):
    from services.order_service.router import customer_router as order_customer_router
    from services.order_service.router import router as order_router
    from services.payment_service.router import public_router as payment_public_router
    from services.payment_service.router import router as payment_router
    from services.product_service.router import router as product_router
    from services.promotion_service.router import customer_router as promotion_customer_router
    from services.promotion_service.router import router as promotion_router
    from services.sales_service.router import router as sales_router
    from services.orchestrator.router import router as checkout_router

    # Routers only: observability bootstrap stays out of the test process
    app = FastAPI()
    register_exception_handlers(app)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.include_router(product_router, prefix="/products")
    app.include_router(promotion_customer_router, prefix="/promotions")
    app.include_router(promotion_router, prefix="/promotions")
    app.include_router(order_customer_router, prefix="/orders")
    app.include_router(order_router, prefix="/orders")
    app.include_router(payment_public_router, prefix="/payments")
    app.include_router(payment_router, prefix="/payments")
    app.include_router(sales_router, prefix="/sales")
    app.include_router(checkout_router, prefix="/checkout")

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = SimulatedGatewayClient
    limiter.enabled = False

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    limiter.enabled = True


@pytest.fixture
def customer_headers():
    token = create_access_token({"sub": "customer-1"})
    return {"Authorization": f"Bearer {token}"}
