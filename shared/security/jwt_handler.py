"""
Customer tokens. The storefront's identity provider signs them with the
shared secret; this cluster only verifies them. ``create_access_token`` is
kept for local tooling and tests.
"""
import os
import warnings
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
if not SECRET_KEY:
    warnings.warn(
        "JWT_SECRET_KEY is not set. Customer tokens are verified with an insecure "
        "development key. Set this env var in production!",
        stacklevel=2,
    )
    SECRET_KEY = "insecure-development-jwt-key"

ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
# When set, tokens minted for another audience are refused
AUDIENCE = os.getenv("JWT_AUDIENCE") or None
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))


def create_access_token(claims: dict, expires_delta: timedelta | None = None) -> str:
    to_encode = dict(claims)
    to_encode["exp"] = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    if AUDIENCE and "aud" not in to_encode:
        to_encode["aud"] = AUDIENCE
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def verify_access_token(token: str) -> dict | None:
    """Decoded claims, or None when the token is invalid, expired or for another audience."""
    try:
        return jwt.decode(
            token,
            SECRET_KEY,
            algorithms=[ALGORITHM],
            audience=AUDIENCE,
            options={"verify_aud": AUDIENCE is not None},
        )
    except JWTError:
        return None
