"""
Health check endpoint for monitoring and load balancer checks.
"""

import logging
from datetime import timedelta

from django.db import connection
from django.http import JsonResponse
from django.utils import timezone

from ingestion.models import CanonicalProduct, IngestionRun, IngestionRunStatus

logger = logging.getLogger(__name__)


def get_redis_connection():
    """
    Get Redis connection for health check.

    Returns:
        Redis client if the cache is django-redis, None otherwise.
    """
    from django.core.cache import cache

    if hasattr(cache, "client") and hasattr(cache.client, "get_client"):
        return cache.client.get_client()
    return None


def get_celery_worker_count() -> int:
    """Count active Celery workers (0 when none answer)."""
    from config.celery import app as celery_app

    active = celery_app.control.inspect(timeout=1.0).active()
    return len(active) if active else 0


def health_check(request):
    """
    Health check endpoint for the ingestion service.

    Endpoint: GET /api/health/
    No authentication required (for load balancer checks).

    Response fields:
        - status: "healthy" or "unhealthy"
        - database: "connected" or "error"
        - redis: "connected", "not_configured", or "error"
        - celery_workers: integer count of active workers
        - products: number of canonical products
        - last_run: ISO timestamp of the last completed ingestion run
        - failed_runs_24h: runs that failed in the last 24 hours

    Returns:
        JsonResponse: HTTP 200 for healthy, HTTP 503 for unhealthy
    """
    status = "healthy"
    http_status = 200

    database_status = "connected"
    try:
        connection.ensure_connection()
    except Exception as e:
        logger.error(f"Health check database error: {e}")
        database_status = "error"
        status = "unhealthy"
        http_status = 503

    # Redis and Celery degrade gracefully
    redis_status = "not_configured"
    try:
        redis_client = get_redis_connection()
        if redis_client is not None:
            redis_status = "connected" if redis_client.ping() else "error"
    except Exception as e:
        logger.warning(f"Health check redis error: {e}")
        redis_status = "error"

    try:
        celery_workers = get_celery_worker_count()
    except Exception as e:
        logger.warning(f"Health check celery error: {e}")
        celery_workers = 0

    products = None
    last_run = None
    failed_runs_24h = None
    if database_status == "connected":
        products = CanonicalProduct.objects.count()
        latest = (
            IngestionRun.objects.filter(status=IngestionRunStatus.COMPLETED)
            .order_by("-completed_at")
            .values_list("completed_at", flat=True)
            .first()
        )
        last_run = latest.isoformat() if latest else None
        failed_runs_24h = IngestionRun.objects.filter(
            status=IngestionRunStatus.FAILED,
            created_at__gte=timezone.now() - timedelta(hours=24),
        ).count()

    return JsonResponse(
        {
            "status": status,
            "database": database_status,
            "redis": redis_status,
            "celery_workers": celery_workers,
            "products": products,
            "last_run": last_run,
            "failed_runs_24h": failed_runs_24h,
            "timestamp": timezone.now().isoformat(),
        },
        status=http_status,
    )
