import logging

from django.http import JsonResponse
from django.db import connection

from apps.utils.kvstore import get_key_value_store

logger = logging.getLogger(__name__)


def health_check(request):
    status = {"db": "unknown", "kv": "unknown"}
    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
        status["db"] = "ok"

        store = get_key_value_store()
        store.set("health:ping", "pong", ttl=5)
        status["kv"] = "ok" if store.get("health:ping") == "pong" else "degraded"

        return JsonResponse({"status": "ok", "components": status}, status=200)
    except Exception:
        logger.exception("Health check failed", extra={"components": status})
        return JsonResponse(
            {"status": "error", "detail": "Backing service unavailable.", "components": status},
            status=503
        )
