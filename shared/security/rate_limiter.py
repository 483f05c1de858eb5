from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from .jwt_handler import verify_access_token


def customer_id_or_ip(request: Request) -> str:
    """
    SlowAPI key: checkouts are limited per customer, anonymous traffic per IP.

    The limit check can run before the auth dependency, so the bearer token
    is decoded here when the customer isn't on the request state yet.
    """
    customer_id = getattr(request.state, "customer_id", None)
    if customer_id is None:
        scheme, _, token = request.headers.get("Authorization", "").partition(" ")
        if scheme.lower() == "bearer" and token:
            customer_id = (verify_access_token(token) or {}).get("sub")

    if customer_id:
        return f"customer:{customer_id}"
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(key_func=customer_id_or_ip)
