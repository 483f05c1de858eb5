from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from shared.config.database import create_schemas_and_tables
from shared.errors import register_exception_handlers
from shared.observability import setup_observability
from shared.security import limiter
from .router import router, customer_router, public_router
from .models import Order, OrderItem, OrderStatusHistory  # noqa: F401, registers models with SQLAlchemy Base

order_app = FastAPI(title="Order Service", version="2.0.0")

# --- OBSERVABILITY BOOTSTRAP ---
setup_observability(order_app, "order_service")
register_exception_handlers(order_app)

# --- SECURITY SETUP ---
order_app.state.limiter = limiter
order_app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

order_app.include_router(public_router)
order_app.include_router(customer_router)
order_app.include_router(router)

@order_app.on_event("startup")
async def startup_event():
    await create_schemas_and_tables()
