from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from rest_framework.exceptions import ValidationError as DRFValidationError
import logging

logger = logging.getLogger(__name__)


class BusinessLogicException(Exception):
    """
    Raised when a domain rule is violated (e.g. 'Stock not available').
    Every subclass maps to a stable machine-readable code and an HTTP status.
    """
    default_code = "business_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message, code=None):
        self.message = message
        self.code = code or self.default_code
        super().__init__(message)


class BusinessValidationError(BusinessLogicException):
    """Malformed or missing input."""
    default_code = "validation_error"


class NotFound(BusinessLogicException):
    default_code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ProductNotFound(NotFound):
    default_code = "product_not_found"

    def __init__(self, product_id, message=None):
        self.product_id = str(product_id)
        super().__init__(message or f"Product not found: {product_id}")


class Unauthorized(BusinessLogicException):
    """Caller is not the principal bound to the resource."""
    default_code = "unauthorized"
    status_code = status.HTTP_403_FORBIDDEN


class InvalidTransition(BusinessLogicException):
    default_code = "invalid_transition"
    status_code = status.HTTP_409_CONFLICT


class InsufficientStock(BusinessLogicException):
    default_code = "insufficient_stock"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, product_id, message):
        self.product_id = str(product_id)
        super().__init__(message)


class Conflict(BusinessLogicException):
    """Duplicate processing or a lost race."""
    default_code = "conflict"
    status_code = status.HTTP_409_CONFLICT


class UpstreamUnavailable(BusinessLogicException):
    """
    External provider failed. Recovered internally (fallback), so this
    should never reach a client.
    """
    default_code = "upstream_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


def custom_exception_handler(exc, context):
    # Domain errors first: they never carry internals
    if isinstance(exc, BusinessLogicException):
        return Response(
            {"error": exc.message, "code": exc.code},
            status=exc.status_code
        )

    # Call REST framework's default exception handler
    response = exception_handler(exc, context)

    if isinstance(exc, DRFValidationError) and response is not None:
        response.data = {
            "error": "Invalid input.",
            "code": "validation_error",
            "details": response.data,
        }
        return response

    # If response is None, it's an unhandled server error (500)
    if response is None:
        logger.error(f"Unhandled Exception: {exc}", exc_info=True)
        return Response(
            {"error": "Internal Server Error", "code": "server_error"},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    if isinstance(response.data, dict) and "detail" in response.data:
        response.data = {
            "error": str(response.data["detail"]),
            "code": getattr(response.data["detail"], "code", "error"),
        }
    return response
