"""
Operator keys for the internal endpoints (status updates, refunds,
recalculation, promotion administration).

``INTERNAL_API_KEY`` holds the current key. During a rotation the previous
keys stay valid through ``INTERNAL_API_KEYS_PREVIOUS`` (comma separated)
until every caller has switched over.
"""
import os
import secrets
import warnings

_DEV_KEY = "insecure-default-change-me"


def _load_keys() -> tuple[str, ...]:
    current = os.getenv("INTERNAL_API_KEY", "")
    if not current:
        warnings.warn(
            "INTERNAL_API_KEY is not set. Operator endpoints accept an insecure "
            "development key. Set this env var in production!",
            stacklevel=2,
        )
        current = _DEV_KEY
    previous = [k.strip() for k in os.getenv("INTERNAL_API_KEYS_PREVIOUS", "").split(",") if k.strip()]
    return (current, *previous)


ACCEPTED_KEYS: tuple[str, ...] = _load_keys()


def verify_api_key(provided_key: str | None) -> bool:
    if not provided_key:
        return False
    # Compare against every key so the timing does not reveal which one matched
    matched = False
    for key in ACCEPTED_KEYS:
        matched |= secrets.compare_digest(provided_key.encode(), key.encode())
    return matched
