import enum
from typing import Any, Dict, Optional
from fastapi import FastAPI, HTTPException, Request,status
from fastapi.exceptions import RequestValidationError
from storefront.common.constants import GENERIC_PAYMENT_FAILURE, request_id_ctx
from storefront.common.logging_setup import get_logger
from storefront.common.utils import build_error, json_error

logger = get_logger("storefront.errors")


class ErrorKind(str, enum.Enum):
    VALIDATION = "VALIDATION"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    STATE_CONFLICT = "STATE_CONFLICT"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    GATEWAY_UNAVAILABLE = "GATEWAY_UNAVAILABLE"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"


class StoreFrontError(Exception):
    """Base of every classified failure. `message` is safe to show to the caller."""

    kind: ErrorKind = ErrorKind.VALIDATION
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "BAD_REQUEST"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def public_details(self) -> Dict[str, Any]:
        return {"message": self.message, **self.details}


class ValidationFailed(StoreFrontError):
    kind = ErrorKind.VALIDATION
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"


class EmptyCart(ValidationFailed):
    code = "EMPTY_CART"

    def __init__(self, message: str = "At least one item is required"):
        super().__init__(message)


class Unauthorized(StoreFrontError):
    kind = ErrorKind.UNAUTHORIZED
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "INVALID_AUTH"


class Forbidden(StoreFrontError):
    kind = ErrorKind.FORBIDDEN
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"


class NotFound(StoreFrontError):
    kind = ErrorKind.NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class InvalidState(StoreFrontError):
    kind = ErrorKind.STATE_CONFLICT
    status_code = status.HTTP_409_CONFLICT
    code = "INVALID_STATE"

    def __init__(self, message: str, *, current_status: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        if current_status is not None:
            details.setdefault("current_status", current_status)
        super().__init__(message, details=details)
        self.current_status = current_status


class AlreadyInitialized(InvalidState):
    code = "PAYMENT_ALREADY_INITIALIZED"


class InvalidStateForDeletion(InvalidState):
    code = "INVALID_STATE_FOR_DELETION"

    def __init__(self, current_status: str):
        super().__init__(f"Cannot delete order with status: {current_status}", current_status=current_status)


class DuplicateOrderNumber(InvalidState):
    code = "DUPLICATE_ORDER_NUMBER"

    def __init__(self, order_number: str):
        super().__init__("Order number already exists")
        self.order_number = order_number


class PaymentFailed(StoreFrontError):
    """Any payment outcome other than confirmation. `reason` stays server side."""

    kind = ErrorKind.PAYMENT_FAILED
    status_code = status.HTTP_400_BAD_REQUEST
    code = "PAYMENT_FAILED"

    def __init__(self, reason: str, *, order_number: Optional[str] = None):
        super().__init__(GENERIC_PAYMENT_FAILURE)
        self.reason = reason
        self.order_number = order_number


class AmountMismatch(PaymentFailed):

    def __init__(self, expected, received, *, order_number: Optional[str] = None):
        super().__init__("amount_mismatch", order_number=order_number)
        self.expected = expected
        self.received = received


class PaymentPending(StoreFrontError):
    """Gateway has not reached a final answer yet. Nothing was settled, retry later."""

    kind = ErrorKind.STATE_CONFLICT
    status_code = status.HTTP_409_CONFLICT
    code = "PAYMENT_PENDING"

    def __init__(self, gateway_status: Optional[str] = None, *, order_number: Optional[str] = None):
        super().__init__("Payment is still being processed, please retry shortly")
        self.gateway_status = gateway_status
        self.order_number = order_number


class GatewayUnavailable(StoreFrontError):
    kind = ErrorKind.GATEWAY_UNAVAILABLE
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "GATEWAY_UNAVAILABLE"
    retry_after_seconds = 5

    def __init__(self, reason: str):
        super().__init__("Payment service temporarily unavailable, please retry")
        self.reason = reason


class InvalidSignature(StoreFrontError):
    kind = ErrorKind.INVALID_SIGNATURE
    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVALID_SIGNATURE"

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message)


async def storefront_error_handler(request: Request, exc: StoreFrontError):
    rid = request_id_ctx.get(None)
    headers = None

    log_extra = {"path": request.url.path, "method": request.method,
                 "error_kind": exc.kind.value, "error_code": exc.code}
    if exc.kind is ErrorKind.GATEWAY_UNAVAILABLE:
        headers = {"Retry-After": str(exc.retry_after_seconds)}
        logger.warning("request.gateway_unavailable", extra={**log_extra, "reason": exc.reason})
    elif exc.kind is ErrorKind.PAYMENT_FAILED:
        logger.info("request.payment_failed", extra={**log_extra, "reason": exc.reason,
                                                     "order_number": exc.order_number})
    elif exc.kind is ErrorKind.INVALID_SIGNATURE:
        logger.warning("request.invalid_signature", extra=log_extra)
    else:
        logger.info("request.rejected", extra=log_extra)

    payload = build_error(code=exc.code, details=exc.public_details(), request_id=rid)
    return json_error(payload, status_code=exc.status_code, headers=headers)


async def fallback_handler(request: Request, exc: Exception):

    rid = request_id_ctx.get(None)
    body = {"message": "Internal Server Error"}

    logger.error(
        "unexpected.exception",
        extra={
            "path": request.url.path,
            "method": request.method,
        },
        exc_info=exc,
    )

    payload = build_error(code="SERVER_ERROR", details=body, request_id=rid)
    return json_error(payload, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    rid = request_id_ctx.get(None)
    logger.warning(
        "request.validation_failed",
        extra={
            "errors": exc.errors(),
            "path": request.url.path,
        },
    )

    fields = [".".join(str(p) for p in err.get("loc", ())[1:]) for err in exc.errors()]
    payload = build_error(code="UNPROCESSABLE_ENTITY",
                          details={"message": "invalid request", "fields": fields}, request_id=rid)
    return json_error(payload, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)


async def http_exception_handler(request: Request, exc: HTTPException):

    rid = request_id_ctx.get(None)
    payload = build_error(code=f"HTTP_{exc.status_code}", details={"message": exc.detail}, request_id=rid)
    return json_error(payload, status_code=exc.status_code, headers=getattr(exc, "headers", None))


def register_all_exceptions(app: FastAPI):

    app.add_exception_handler(
        Exception, # catch all unidentified/unhandled exceptions
        fallback_handler
    )

    app.add_exception_handler(
        StoreFrontError,
        storefront_error_handler
    )

    app.add_exception_handler(
        RequestValidationError,
        validation_exception_handler
    )

    app.add_exception_handler(
        HTTPException,
        http_exception_handler
    )
