from .setup import setup_observability, configure_logging
from .metrics import (
    ledger_order_transitions_total,
    ledger_payment_callbacks_total,
    ledger_sales_deltas_total,
    ledger_drift_total,
    ledger_discount_validations_total,
    ledger_recalculation_duration_seconds,
    ledger_saga_compensation_total
)
