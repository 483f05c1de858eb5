from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from shared.config.database import create_schemas_and_tables
from shared.errors import register_exception_handlers
from shared.observability import setup_observability
from shared.security import limiter
from .router import router, public_router

checkout_app = FastAPI(title="Checkout Service", version="2.0.0")

# --- OBSERVABILITY BOOTSTRAP ---
setup_observability(checkout_app, "checkout_service")
register_exception_handlers(checkout_app)

# --- SECURITY SETUP ---
checkout_app.state.limiter = limiter
checkout_app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

checkout_app.include_router(public_router)
checkout_app.include_router(router)

@checkout_app.on_event("startup")
async def startup_event():
    await create_schemas_and_tables()
