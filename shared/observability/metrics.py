from prometheus_client import Counter, Histogram

# Business Metrics
ledger_order_transitions_total = Counter(
    "ledger_order_transitions_total",
    "Order fulfilment status transitions applied",
    ["from_status", "to_status"]
)

ledger_payment_callbacks_total = Counter(
    "ledger_payment_callbacks_total",
    "Payment gateway callbacks received",
    ["outcome", "disposition"] # disposition: 'applied', 'replayed', 'rejected'
)

ledger_sales_deltas_total = Counter(
    "ledger_sales_deltas_total",
    "Sales ledger deltas by sign and result",
    ["sign", "result"] # result: 'applied', 'redundant'
)

ledger_drift_total = Counter(
    "ledger_drift_total",
    "Counter corrections caused by ledger drift",
    ["source"] # source: 'clamp', 'recalculation'
)

ledger_discount_validations_total = Counter(
    "ledger_discount_validations_total",
    "Discount engine validations",
    ["result"] # 'valid' or the failing check
)

ledger_recalculation_duration_seconds = Histogram(
    "ledger_recalculation_duration_seconds",
    "Duration of the full sales ledger recalculation"
)

ledger_saga_compensation_total = Counter(
    "ledger_saga_compensation_total",
    "Total saga compensations triggered",
    ["step_name"]
)
