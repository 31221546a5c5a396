"""
Tests for the Celery tasks.

Celery runs eagerly under the test settings; dispatch is patched where a
task would hand work to another queue.
"""

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from django.test import override_settings
from django.utils import timezone

from ingestion.models import IngestionRun, IngestionRunStatus, SaleRecord
from ingestion.parsers.base import ParseResult
from ingestion.services.product_types import ProductIdentity, ProductPatch
from ingestion.services.resolver import Resolver
from ingestion.services.totals import TotalResult, TotalState
from ingestion.tasks import (
    check_due_sources,
    deactivate_expired_sales,
    ingest_source,
    refresh_source_totals,
    reprocess_raw_responses,
)


@pytest.mark.django_db
class TestCheckDueSources:
    """Tests for the periodic dispatcher."""

    def test_dispatches_only_due_active_sources(self, duga_source, b10f_source, heyzo_source):
        b10f_source.next_run_at = timezone.now() + timedelta(hours=1)
        b10f_source.save()
        heyzo_source.is_active = False
        heyzo_source.save()

        with patch("ingestion.tasks.ingest_source.apply_async") as apply_async:
            result = check_due_sources()

        assert result["sources_found"] == 1
        run = IngestionRun.objects.get()
        assert run.source == duga_source
        assert run.options["limit"] == duga_source.default_limit
        apply_async.assert_called_once_with(args=["duga"], kwargs={"run_id": str(run.id)}, queue="ingest")

    def test_overdue_source_is_dispatched(self, duga_source):
        duga_source.next_run_at = timezone.now() - timedelta(minutes=5)
        duga_source.save()

        with patch("ingestion.tasks.ingest_source.apply_async"):
            assert check_due_sources()["sources_found"] == 1

    @pytest.mark.parametrize("status", [IngestionRunStatus.PENDING, IngestionRunStatus.RUNNING])
    def test_source_with_active_run_is_not_dispatched_again(self, duga_source, status):
        """A long run is not duplicated by the next beat tick."""
        IngestionRun.objects.create(source=duga_source, status=status)

        with patch("ingestion.tasks.ingest_source.apply_async") as apply_async:
            result = check_due_sources()

        assert result["sources_found"] == 0
        assert result["sources_busy"] == 1
        apply_async.assert_not_called()
        assert IngestionRun.objects.count() == 1

    def test_finished_run_does_not_block(self, duga_source):
        IngestionRun.objects.create(source=duga_source, status=IngestionRunStatus.COMPLETED)

        with patch("ingestion.tasks.ingest_source.apply_async"):
            assert check_due_sources()["sources_found"] == 1

    def test_abandoned_run_does_not_block(self, duga_source, settings):
        settings.INGEST_ACTIVE_RUN_TIMEOUT_HOURS = 6
        IngestionRun.objects.create(
            source=duga_source,
            status=IngestionRunStatus.RUNNING,
            created_at=timezone.now() - timedelta(hours=7),
        )

        with patch("ingestion.tasks.ingest_source.apply_async"):
            assert check_due_sources()["sources_found"] == 1


@pytest.mark.django_db
class TestIngestSourceTask:
    """Tests for the worker task."""

    def test_unknown_source(self):
        result = ingest_source("nope")
        assert result == {"slug": "nope", "status": "failed", "error": "unknown source"}

    def test_uses_stored_run_options(self, heyzo_source):
        run = IngestionRun.objects.create(source=heyzo_source, options={"limit": 2, "offset": 30})
        parser = MagicMock()
        parser.collect_local_ids.return_value = ["3001", "3002"]
        parser.parse_detail_page.return_value = ParseResult(reason="not_product")

        with patch("ingestion.parsers.base.get_parser", return_value=parser):
            result = ingest_source("heyzo", run_id=str(run.id))

        parser.collect_local_ids.assert_called_once_with(2, 30)
        assert result["run_id"] == str(run.id)
        assert result["status"] == IngestionRunStatus.COMPLETED
        assert result["stats"]["not_products"] == 2

    def test_explicit_options_override_stored_ones(self, heyzo_source):
        run = IngestionRun.objects.create(source=heyzo_source, options={"limit": 2})
        parser = MagicMock()
        parser.collect_local_ids.return_value = []

        with patch("ingestion.parsers.base.get_parser", return_value=parser):
            ingest_source("heyzo", run_id=str(run.id), limit=7)

        parser.collect_local_ids.assert_called_once_with(7, 0)

    @override_settings(DUGA_APP_ID="")
    def test_configuration_error_marks_run_failed(self, duga_source):
        result = ingest_source("duga")

        assert result["status"] == IngestionRunStatus.FAILED
        assert "DUGA_APP_ID" in result["error"]
        assert IngestionRun.objects.get(id=result["run_id"]).status == IngestionRunStatus.FAILED


@pytest.mark.django_db
class TestMaintenanceTasks:
    """Tests for reprocessing, totals and sale expiry tasks."""

    def test_reprocess_unknown_source(self):
        assert reprocess_raw_responses("nope")["error"] == "unknown source"

    def test_reprocess_without_captures(self, heyzo_source):
        with patch("ingestion.parsers.base.get_parser", return_value=MagicMock()):
            result = reprocess_raw_responses("heyzo")

        assert result["status"] == IngestionRunStatus.COMPLETED
        assert result["stats"]["fetched"] == 0

    def test_refresh_source_totals(self):
        estimator = MagicMock()
        estimator.get_all.return_value = [
            TotalResult(source="duga", total=185871, origin="DUGA API (count)"),
            TotalResult(source="fc2", total=500000, origin="fc2.com (estimate)", is_estimate=True,
                        state=TotalState.FAILED),
        ]

        with patch("ingestion.tasks.get_totals_estimator", return_value=estimator):
            result = refresh_source_totals()

        estimator.get_all.assert_called_once_with(force_refresh=True)
        assert result["totals"][0]["total"] == 185871
        assert result["totals"][1]["state"] == "failed"

    def test_deactivate_expired_sales(self, duga_source):
        listing = Resolver().upsert(
            ProductIdentity("duga", "ppv-0001"), ProductPatch(title="真夏の恋物語 第二章", data_origin="api")
        ).product_source
        SaleRecord.objects.create(
            source=duga_source,
            source_local_id="ppv-0001",
            product_source=listing,
            regular_price=1980,
            sale_price=980,
            discount_percent=51,
            ends_at=timezone.now() - timedelta(hours=1),
        )

        assert deactivate_expired_sales() == {"deactivated": 1}
        assert SaleRecord.objects.filter(is_active=True).count() == 0
