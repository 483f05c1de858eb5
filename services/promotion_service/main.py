from fastapi import FastAPI
from shared.config.database import create_schemas_and_tables
from shared.errors import register_exception_handlers
from shared.observability import setup_observability
from .router import router, customer_router, public_router
from .models import Coupon, Offer, PromotionUsage  # noqa: F401, registers models with SQLAlchemy Base

promotion_app = FastAPI(title="Promotion Service", version="1.0.0")

# --- OBSERVABILITY BOOTSTRAP ---
setup_observability(promotion_app, "promotion_service")
register_exception_handlers(promotion_app)

promotion_app.include_router(public_router)
promotion_app.include_router(customer_router)
promotion_app.include_router(router)

@promotion_app.on_event("startup")
async def startup_event():
    await create_schemas_and_tables()
