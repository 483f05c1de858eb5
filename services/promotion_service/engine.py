"""
Discount Engine.

Pure functions: validation and discount computation read a rule (Coupon or
Offer) and an order snapshot and never write to either. Redemption lives in
the sales ledger.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from shared.timeutils import as_utc, utc_now

CENT = Decimal("0.01")

PERCENTAGE = "percentage"
FIXED_AMOUNT = "fixed_amount"
DISCOUNT_TYPES = (PERCENTAGE, FIXED_AMOUNT)


def normalize_code(code: str) -> str:
    return "".join(code.split()).upper()


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class SnapshotItem:
    product_id: int
    quantity: int
    line_total: Decimal
    category: Optional[str] = None


@dataclass(frozen=True)
class OrderSnapshot:
    subtotal: Decimal
    items: tuple[SnapshotItem, ...] = ()

    @property
    def product_ids(self) -> set[int]:
        return {item.product_id for item in self.items}

    @property
    def categories(self) -> set[str]:
        return {item.category for item in self.items if item.category}


@dataclass
class ValidationResult:
    valid: bool
    reason: Optional[str] = None
    # failing check name, used as the metric label
    check: str = "valid"
    discount: Decimal = field(default_factory=lambda: Decimal("0.00"))


def _label(rule) -> str:
    return getattr(rule, "kind", "coupon").capitalize()


def _reject(check: str, reason: str) -> ValidationResult:
    return ValidationResult(valid=False, reason=reason, check=check)


def validate(
    rule,
    snapshot: OrderSnapshot,
    customer_id: str,
    customer_usage_count: int = 0,
    now: Optional[datetime] = None,
) -> ValidationResult:
    """
    Run the checks in a fixed order; the first failing check decides the reason.

    ``customer_usage_count`` is the customer's net redemptions of this rule
    (redemptions minus reversals) taken from the usage log.
    """
    now = now or utc_now()
    label = _label(rule)

    if not rule.is_active:
        return _reject("inactive", f"{label} is not active")

    if now < as_utc(rule.valid_from):
        return _reject("not_started", f"{label} is not yet valid")
    if now > as_utc(rule.valid_until):
        return _reject("expired", f"{label} has expired")

    if rule.max_total_uses is not None and (rule.total_usage_count or 0) >= rule.max_total_uses:
        return _reject("total_limit", f"{label} usage limit reached")

    if rule.max_uses_per_customer is not None and customer_usage_count >= rule.max_uses_per_customer:
        return _reject(
            "customer_limit",
            f"You have reached the usage limit for this {label.lower()}",
        )

    minimum = to_money(rule.minimum_order_amount or 0)
    if snapshot.subtotal < minimum:
        return _reject("minimum_amount", f"Minimum order amount of {minimum} required")

    applicable = set(rule.applicable_products or [])
    if applicable and not (applicable & snapshot.product_ids):
        return _reject("not_applicable", f"{label} not applicable to items in your cart")

    categories = {c.lower() for c in (rule.applicable_categories or [])}
    if categories and not (categories & {c.lower() for c in snapshot.categories}):
        return _reject("not_applicable", f"{label} not applicable to items in your cart")

    excluded = set(rule.excluded_products or [])
    if excluded & snapshot.product_ids:
        return _reject("excluded", f"{label} cannot be applied to some items in your cart")

    return ValidationResult(valid=True, discount=compute_discount(rule, snapshot))


def compute_discount(rule, snapshot: OrderSnapshot) -> Decimal:
    """Discount for the snapshot, rounded to cents and never above the subtotal."""
    subtotal = to_money(snapshot.subtotal)
    value = Decimal(str(rule.discount_value))

    if rule.discount_type == PERCENTAGE:
        amount = subtotal * value / Decimal(100)
        if rule.max_discount_amount is not None:
            amount = min(amount, Decimal(str(rule.max_discount_amount)))
    else:
        amount = min(value, subtotal)

    amount = to_money(amount)
    return max(Decimal("0.00"), min(amount, subtotal))
