import logging

from django.core.cache import cache
from django.db import DatabaseError, connection
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def health_check(request):
    status = {"db": "unknown", "cache": "unknown"}
    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
        status["db"] = "ok"
    except DatabaseError as e:
        logger.error("Health check: database unreachable: %s", e)
        return JsonResponse(
            {"status": "error", "detail": str(e), "components": status},
            status=503
        )

    cache.set("health:ping", "pong", timeout=5)
    status["cache"] = "ok" if cache.get("health:ping") == "pong" else "degraded"

    return JsonResponse({"status": "ok", "components": status}, status=200)
