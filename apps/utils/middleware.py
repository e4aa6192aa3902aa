import logging
import time

from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

logger = logging.getLogger("apps.requests")


class GlobalExceptionMiddleware(MiddlewareMixin):
    """
    Last line of defense for non-DRF views.
    """
    def process_exception(self, request, exception):
        logger.exception(f"Unhandled Middleware Exception: {str(exception)}")
        if request.path.startswith('/api/'):
            return JsonResponse(
                {"error": "Internal System Error", "code": "server_error"},
                status=500
            )
        return None  # Let Django's default 500 handler work for HTML


class RequestLogMiddleware(MiddlewareMixin):
    """
    One structured line per API request.
    """
    def process_request(self, request):
        request._started_at = time.monotonic()

    def process_response(self, request, response):
        if not request.path.startswith('/api/'):
            return response

        started = getattr(request, "_started_at", None)
        duration_ms = round((time.monotonic() - started) * 1000, 1) if started else None
        user = getattr(request, "user", None)
        logger.info(
            f"{request.method} {request.path} -> {response.status_code} ({duration_ms} ms)",
            extra={"user_id": getattr(user, "id", None) if user and user.is_authenticated else None},
        )
        return response
