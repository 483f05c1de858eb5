from fastapi import FastAPI
from shared.config.database import create_schemas_and_tables

# IMPORTANT: import models so they register with Base
from services.product_service import models as product_models  # noqa: F401
from services.promotion_service import models as promotion_models  # noqa: F401
from services.order_service import models as order_models  # noqa: F401
from services.payment_service import models as payment_models  # noqa: F401

from services.product_service.main import product_app
from services.promotion_service.main import promotion_app
from services.order_service.main import order_app
from services.payment_service.main import payment_app
from services.sales_service.main import sales_app
from services.orchestrator.main import checkout_app
from services.notification_service.dispatcher import notifier

app = FastAPI(title="Commerce Ledger Cluster")

@app.on_event("startup")
async def startup_event():
    # Schemas first, then every table in the shared metadata
    await create_schemas_and_tables()

@app.on_event("shutdown")
async def shutdown_event():
    await notifier.drain()

app.mount("/products", product_app)
app.mount("/promotions", promotion_app)
app.mount("/orders", order_app)
app.mount("/payments", payment_app)
app.mount("/sales", sales_app)
app.mount("/checkout", checkout_app)
