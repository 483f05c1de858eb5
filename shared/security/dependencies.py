import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader, OAuth2PasswordBearer

from .api_key import verify_api_key
from .jwt_handler import verify_access_token

logger = structlog.get_logger(__name__)

# Customer tokens are issued by the storefront's identity provider
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)
api_key_header = APIKeyHeader(name="X-Internal-API-Key", auto_error=False)


def _unauthorized(reason: str, request: Request) -> HTTPException:
    logger.info("customer_auth_rejected", reason=reason, path=request.url.path)
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_customer(request: Request, token: str | None = Depends(oauth2_scheme)) -> str:
    """The customer id (``sub``) of the signed-in shopper placing or validating an order."""
    if not token:
        raise _unauthorized("missing_token", request)

    payload = verify_access_token(token)
    if payload is None:
        raise _unauthorized("invalid_token", request)

    customer_id = payload.get("sub")
    if not customer_id:
        raise _unauthorized("missing_subject", request)

    # Picked up by the rate limiter key
    request.state.customer_id = str(customer_id)
    return str(customer_id)


async def verify_internal_api_key(request: Request, api_key: str | None = Depends(api_key_header)) -> bool:
    """Operator and collaborator endpoints."""
    if not verify_api_key(api_key):
        logger.warning("operator_auth_rejected", path=request.url.path, key_present=bool(api_key))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or missing X-Internal-API-Key header",
        )
    return True
