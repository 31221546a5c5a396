"""
Celery tasks for the ingestion service.

- check_due_sources: Periodic task to find and dispatch due sources
- ingest_source: Worker task running one source batch
- reprocess_raw_responses: Replay stored captures for one source
- refresh_source_totals: Refresh the cross-source total estimates
- deactivate_expired_sales: Close sales whose end date has passed
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from celery import shared_task
from django.conf import settings
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from ingestion.exceptions import ConfigurationError
from ingestion.models import CatalogSource, IngestionRun, IngestionRunStatus
from ingestion.services.pipeline import IngestionOptions, IngestionRunner, reprocess_raw_responses as replay
from ingestion.services.resolver import Resolver
from ingestion.services.totals import get_totals_estimator

logger = logging.getLogger(__name__)


@shared_task(name="ingestion.tasks.check_due_sources")
def check_due_sources() -> Dict[str, Any]:
    """
    Periodic task to dispatch sources due for ingestion.

    Runs every 15 minutes via Celery Beat. Creates an IngestionRun for each
    active source whose next_run_at is unset or in the past, unless the
    source already has a pending or running run. Active runs older than
    INGEST_ACTIVE_RUN_TIMEOUT_HOURS are treated as abandoned and no longer
    block dispatch.

    Returns:
        Dict with the number of runs dispatched
    """
    now = timezone.now()
    due_sources = CatalogSource.objects.filter(is_active=True).filter(
        Q(next_run_at__isnull=True) | Q(next_run_at__lte=now)
    )
    active_cutoff = now - timedelta(hours=getattr(settings, "INGEST_ACTIVE_RUN_TIMEOUT_HOURS", 6))
    busy_source_ids = IngestionRun.objects.filter(
        status__in=[IngestionRunStatus.PENDING, IngestionRunStatus.RUNNING],
        created_at__gt=active_cutoff,
    ).values("source_id")
    skipped = due_sources.filter(id__in=busy_source_ids).count()
    due_sources = due_sources.exclude(id__in=busy_source_ids)

    runs_created = []
    for source in due_sources:
        options = IngestionOptions(limit=source.default_limit)
        with transaction.atomic():
            run = IngestionRun.objects.create(source=source, options=options.to_dict())
        ingest_source.apply_async(args=[source.slug], kwargs={"run_id": str(run.id)}, queue="ingest")
        runs_created.append(str(run.id))
        logger.info(f"Dispatched ingestion run {run.id} for source {source.slug}")

    logger.info(
        f"Due source check complete: {len(runs_created)} sources dispatched, "
        f"{skipped} skipped with an active run"
    )
    return {
        "checked": True,
        "sources_found": len(runs_created),
        "sources_busy": skipped,
        "runs_created": runs_created,
        "timestamp": now.isoformat(),
    }


@shared_task(name="ingestion.tasks.ingest_source", bind=True)
def ingest_source(self, slug: str, run_id: Optional[str] = None, **options) -> Dict[str, Any]:
    """
    Run one ingestion batch.

    Args:
        slug: CatalogSource slug
        run_id: Existing IngestionRun to fill in (created when omitted);
            its stored options are used unless overridden
        **options: IngestionOptions fields (limit, offset, start_id, end_id,
            force_reprocess, enable_enrichment)

    Returns:
        Dict with run id, status and statistics
    """
    try:
        source = CatalogSource.objects.get(slug=slug)
    except CatalogSource.DoesNotExist:
        logger.error(f"Unknown source: {slug}")
        return {"slug": slug, "status": "failed", "error": "unknown source"}

    run = None
    stored_options = {}
    if run_id:
        run = IngestionRun.objects.filter(id=run_id, source=source).first()
        if run is not None:
            stored_options = run.options or {}

    ingestion_options = IngestionOptions.from_dict({**stored_options, **options})
    runner = IngestionRunner(source, ingestion_options, run=run)

    try:
        stats = runner.run()
    except ConfigurationError as e:
        return {
            "slug": slug,
            "run_id": str(runner.ingestion_run.id),
            "status": IngestionRunStatus.FAILED,
            "error": str(e),
        }

    return {
        "slug": slug,
        "run_id": str(runner.ingestion_run.id),
        "status": runner.ingestion_run.status,
        "stats": stats.to_dict(),
    }


@shared_task(name="ingestion.tasks.reprocess_raw_responses", bind=True)
def reprocess_raw_responses(
    self,
    slug: str,
    only_unprocessed: bool = False,
    limit: Optional[int] = None,
    enable_enrichment: bool = False,
) -> Dict[str, Any]:
    """Re-derive canonical records from stored captures for one source."""
    try:
        source = CatalogSource.objects.get(slug=slug)
    except CatalogSource.DoesNotExist:
        logger.error(f"Unknown source: {slug}")
        return {"slug": slug, "status": "failed", "error": "unknown source"}

    try:
        stats = replay(
            source,
            only_unprocessed=only_unprocessed,
            limit=limit,
            enable_enrichment=enable_enrichment,
        )
    except ConfigurationError as e:
        return {"slug": slug, "status": IngestionRunStatus.FAILED, "error": str(e)}

    return {"slug": slug, "status": IngestionRunStatus.COMPLETED, "stats": stats.to_dict()}


@shared_task(name="ingestion.tasks.refresh_source_totals")
def refresh_source_totals(force_refresh: bool = True) -> Dict[str, Any]:
    """Refresh every source's total estimate; failures degrade to fallbacks."""
    results = get_totals_estimator().get_all(force_refresh=force_refresh)
    logger.info(
        "Source totals refreshed: "
        + ", ".join(f"{r.source}={r.total} ({r.state.value})" for r in results)
    )
    return {"totals": [r.to_dict() for r in results]}


@shared_task(name="ingestion.tasks.deactivate_expired_sales")
def deactivate_expired_sales() -> Dict[str, Any]:
    """Mark sales whose ends_at has passed as inactive."""
    count = Resolver.deactivate_expired_sales()
    if count:
        logger.info(f"Deactivated {count} expired sales")
    return {"deactivated": count}
