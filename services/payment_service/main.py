from fastapi import FastAPI

from shared.config.database import create_schemas_and_tables
from shared.errors import register_exception_handlers
from shared.observability.setup import setup_observability

from .models import PaymentCallback  # noqa: F401, registers model with SQLAlchemy Base
from .router import router, public_router


payment_app = FastAPI(title="Payment Service", version="3.0.0")

# Structured logs, OTLP traces to Jaeger, and /metrics
setup_observability(payment_app, "payment_service")
register_exception_handlers(payment_app)

payment_app.include_router(router)
payment_app.include_router(public_router)

@payment_app.on_event("startup")
async def startup_event():
    await create_schemas_and_tables()
