"""Error taxonomy shared by every ledger service.

Each error carries a stable ``code`` and a user-facing ``message``. Storage
driver text never reaches the caller: it is logged and replaced by the
message of the matching error kind.
"""
import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


class LedgerError(Exception):
    """Base exception for all ledger errors."""

    code = "ledger_error"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"success": False, "error": self.code, "message": self.message}


class ValidationError(LedgerError):
    """Bad input shape or values."""

    code = "validation_error"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, message: str, errors: list[str] | None = None):
        self.errors = errors or [message]
        super().__init__(message)

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["errors"] = self.errors
        return body


class InvalidTransitionError(LedgerError):
    """Raised when a status change is not in the transition table."""

    code = "invalid_transition"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, current: str, requested: str, axis: str = "order"):
        self.current = current
        self.requested = requested
        self.axis = axis
        super().__init__(
            f'Cannot change {axis} status from "{current}" to "{requested}"'
        )

    def to_dict(self) -> dict:
        body = super().to_dict()
        body.update(current=self.current, requested=self.requested, axis=self.axis)
        return body


class NotFoundError(LedgerError):
    """Raised when an order, product or promotion doesn't exist."""

    code = "not_found"
    http_status = status.HTTP_404_NOT_FOUND

    def __init__(self, kind: str, key):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class ConflictRetry(LedgerError):
    """Optimistic-concurrency loss: the row changed since it was read."""

    code = "conflict_retry"
    http_status = status.HTTP_409_CONFLICT
    retryable = True

    def __init__(self, kind: str, key):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} {key} was modified concurrently, please retry")


class StorageUnavailable(LedgerError):
    """Transient storage failure that outlived the retry budget."""

    code = "storage_unavailable"
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True

    def __init__(self, message: str = "Storage is temporarily unavailable"):
        super().__init__(message)


class GatewayError(LedgerError):
    """The payment gateway refused or could not be reached. Nothing was written."""

    code = "gateway_error"
    http_status = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str = "Payment gateway request failed"):
        super().__init__(message)


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    logger.info(
        "request_rejected",
        path=request.url.path,
        error=exc.code,
        message=exc.message,
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LedgerError, ledger_error_handler)
