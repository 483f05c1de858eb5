"""Server-side pricing for checkout: line totals, delivery charge and order total."""
import secrets
import string
import time
from datetime import datetime, timedelta
from decimal import Decimal

from shared.config import settings
from services.promotion_service.engine import to_money

_ORDER_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def is_fast_zone_address(address: str) -> bool:
    text = (address or "").lower()
    return any(keyword in text for keyword in settings.FAST_ZONE_KEYWORDS)


def delivery_charge(fast_zone: bool) -> Decimal:
    if fast_zone:
        return to_money(settings.FAST_ZONE_DELIVERY_CHARGE)
    return to_money(settings.STANDARD_DELIVERY_CHARGE)


def estimated_delivery(shipped_at: datetime, fast_zone: bool) -> datetime:
    days = settings.FAST_ZONE_DELIVERY_DAYS if fast_zone else settings.STANDARD_DELIVERY_DAYS
    return shipped_at + timedelta(days=days)


def line_total(unit_price, quantity: int) -> Decimal:
    return to_money(Decimal(str(unit_price)) * quantity)


def order_total(subtotal: Decimal, delivery: Decimal, discount: Decimal) -> Decimal:
    return max(Decimal("0.00"), to_money(subtotal + delivery - discount))


def generate_order_number() -> str:
    """ORD + epoch milliseconds + five random upper-case alphanumerics."""
    suffix = "".join(secrets.choice(_ORDER_SUFFIX_ALPHABET) for _ in range(5))
    return f"ORD{int(time.time() * 1000)}{suffix}"
