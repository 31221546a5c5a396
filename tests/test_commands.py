"""
Tests for the management commands.
"""

import json
from io import StringIO
from unittest.mock import MagicMock, patch

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from ingestion.models import CatalogSource, SourceKind
from ingestion.parsers.base import ParseResult
from ingestion.services.totals import TotalResult, TotalState
from ingestion.sources import SOURCE_DEFINITIONS


@pytest.mark.django_db
class TestSeedSources:
    """Tests for seed_sources."""

    def test_creates_every_registered_source(self):
        out = StringIO()
        call_command("seed_sources", stdout=out)

        assert CatalogSource.objects.count() == len(SOURCE_DEFINITIONS)
        assert CatalogSource.objects.get(slug="b10f").kind == SourceKind.CSV
        assert CatalogSource.objects.get(slug="mgs").default_cookies == {"adc": "1"}
        assert f"{len(SOURCE_DEFINITIONS)} created" in out.getvalue()

    def test_existing_rows_are_kept_without_update(self):
        call_command("seed_sources", stdout=StringIO())
        CatalogSource.objects.filter(slug="duga").update(request_delay_seconds=9)

        out = StringIO()
        call_command("seed_sources", stdout=out)

        assert CatalogSource.objects.get(slug="duga").request_delay_seconds == 9
        assert f"{len(SOURCE_DEFINITIONS)} unchanged" in out.getvalue()

    def test_update_overwrites_settings(self):
        call_command("seed_sources", stdout=StringIO())
        CatalogSource.objects.filter(slug="duga").update(request_delay_seconds=9)

        call_command("seed_sources", "--update", stdout=StringIO())

        assert CatalogSource.objects.get(slug="duga").request_delay_seconds == 1.0


@pytest.mark.django_db
class TestIngestSourceCommand:
    """Tests for ingest_source."""

    def test_unknown_source(self):
        with pytest.raises(CommandError, match="Unknown source"):
            call_command("ingest_source", "nope", stdout=StringIO())

    def test_json_summary(self, heyzo_source):
        parser = MagicMock()
        parser.iter_id_range.return_value = iter(["3002", "3001"])
        parser.parse_detail_page.return_value = ParseResult(reason="not_product")
        out = StringIO()

        with patch("ingestion.parsers.base.get_parser", return_value=parser):
            call_command(
                "ingest_source", "HEYZO", "--start-id=3002", "--end-id=3001", "--json", stdout=out
            )

        summary = json.loads(out.getvalue().strip().splitlines()[-1])
        assert summary["fetched"] == 2
        assert summary["not_products"] == 2

    def test_configuration_error(self, duga_source, settings):
        settings.DUGA_APP_ID = ""
        with pytest.raises(CommandError, match="Configuration error"):
            call_command("ingest_source", "duga", "--limit=1", stdout=StringIO())


@pytest.mark.django_db
class TestReprocessRawCommand:
    """Tests for reprocess_raw."""

    def test_unknown_source(self):
        with pytest.raises(CommandError):
            call_command("reprocess_raw", "nope", stdout=StringIO())

    def test_reports_counts(self, heyzo_source):
        out = StringIO()
        with patch("ingestion.parsers.base.get_parser", return_value=MagicMock()):
            call_command("reprocess_raw", "heyzo", "--unprocessed", stdout=out)

        assert "Reprocessed 0 captures for heyzo" in out.getvalue()


class TestSourceTotalsCommand:
    """Tests for source_totals."""

    def test_prints_totals_and_grand_total(self):
        estimator = MagicMock()
        estimator.get_all.return_value = [
            TotalResult(source="duga", total=185871, origin="DUGA API (count)"),
            TotalResult(source="mgs", total=None, origin="unavailable", error="HTTP 503",
                        state=TotalState.FAILED),
        ]
        out = StringIO()

        with patch("ingestion.management.commands.source_totals.get_totals_estimator", return_value=estimator):
            call_command("source_totals", "--refresh", stdout=out)

        estimator.get_all.assert_called_once_with(force_refresh=True)
        output = out.getvalue()
        assert "185,871" in output
        assert "error: HTTP 503" in output
        assert "Total: 185,871" in output

    def test_unknown_source(self):
        estimator = MagicMock()
        estimator.get_total.side_effect = ValueError("Unknown source: nope")

        with patch("ingestion.management.commands.source_totals.get_totals_estimator", return_value=estimator):
            with pytest.raises(CommandError, match="Unknown source"):
                call_command("source_totals", "--source=nope", stdout=StringIO())
