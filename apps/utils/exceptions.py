from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
import logging

logger = logging.getLogger(__name__)


class BusinessLogicException(Exception):
    """
    Raised when a domain rule is violated (e.g. 'Stock not available').
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "business_error"

    def __init__(self, message, code=None, **details):
        self.message = message
        self.code = code or self.default_code
        self.details = details
        super().__init__(message)


class EmptyCart(BusinessLogicException):
    default_code = "empty_cart"

    def __init__(self, message="Cart is empty."):
        super().__init__(message)


class InsufficientStock(BusinessLogicException):
    status_code = status.HTTP_409_CONFLICT
    default_code = "insufficient_stock"

    def __init__(self, product_id, requested=None, available=None, message=None):
        self.product_id = product_id
        if message is None:
            message = f"Insufficient stock for product {product_id}."
        super().__init__(
            message,
            product_id=str(product_id),
            requested=requested,
            available=available,
        )


class InvalidTransition(BusinessLogicException):
    default_code = "invalid_transition"

    def __init__(self, current, requested):
        self.current = current
        self.requested = requested
        super().__init__(
            f"Cannot move order from '{current}' to '{requested}'.",
            current=current,
            requested=requested,
        )


class NotFound(BusinessLogicException):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"


class TransactionFailure(Exception):
    """
    Infrastructure failure (lock timeout, lost connection, failed commit).
    The unit of work was rolled back, so the caller may retry safely.
    """
    retryable = True

    def __init__(self, operation, cause=None):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} could not be completed: {cause}")


def custom_exception_handler(exc, context):
    # Call REST framework's default exception handler first
    response = exception_handler(exc, context)

    if isinstance(exc, BusinessLogicException):
        payload = {"error": exc.message, "code": exc.code}
        payload.update({k: v for k, v in exc.details.items() if v is not None})
        return Response(payload, status=exc.status_code)

    if isinstance(exc, TransactionFailure):
        logger.warning("Retryable failure in %s: %s", exc.operation, exc.cause)
        return Response(
            {"error": "Temporary failure, please retry.", "code": "transaction_failure", "retryable": True},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    # If response is None, it's an unhandled server error (500)
    if response is None:
        logger.error(f"Unhandled Exception: {exc}", exc_info=True)
        return Response(
            {"error": "Internal Server Error", "code": "server_error"},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    return response
