from fastapi import FastAPI
from shared.config.database import create_schemas_and_tables
from shared.errors import register_exception_handlers
from shared.observability import setup_observability
from .router import router, public_router

sales_app = FastAPI(title="Sales Ledger Service", version="1.0.0")

# --- OBSERVABILITY BOOTSTRAP ---
setup_observability(sales_app, "sales_service")
register_exception_handlers(sales_app)

sales_app.include_router(public_router)
sales_app.include_router(router)

@sales_app.on_event("startup")
async def startup_event():
    await create_schemas_and_tables()
