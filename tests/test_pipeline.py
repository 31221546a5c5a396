"""
Tests for the ingestion runner and offline reprocessing.

Clients, feeds and parsers are mocked; persistence uses the test database.
"""

from unittest.mock import MagicMock, patch

import pytest
from django.test import override_settings

from ingestion.clients.b10f import B10fFeed
from ingestion.clients.base import ApiSearchResult
from ingestion.exceptions import ConfigurationError, RateLimitExceeded, TransportError
from ingestion.models import (
    CanonicalProduct,
    IngestionRun,
    IngestionRunStatus,
    RawResponse,
    SaleRecord,
)
from ingestion.parsers.base import ParseResult
from ingestion.services.pipeline import IngestionOptions, IngestionRunner, reprocess_raw_responses
from ingestion.services.product_types import SaleInfo
from ingestion.services.raw_store import RawResponseStore

CSV_TEXT = "\n".join(
    [
        "productId,releaseDate,title,captureCount,imageType,imageUrl,productUrl,description,price,duration,brand,category,performers",
        "1001,2024-01-05,真夏の恋物語 第一話,0,1,,https://b10f.jp/p/1001.html,,1980,120,Studio,ドラマ,山田花子",
        "1002,2024-01-06,冬の物語 第二話,0,1,,https://b10f.jp/p/1002.html,,980,60,Studio,ドラマ,",
        "1003,2024-01-07,春の物語 第三話,0,1,,https://b10f.jp/p/1003.html,,1480,90,Studio,ドラマ,",
        "1004,2024-01-08,秋の物語 第四話,0,1,,https://b10f.jp/p/1004.html,,1480,90,Studio,ドラマ,",
    ]
)


def api_page(products, total_count=None):
    return ApiSearchResult(
        items=products,
        total_count=total_count if total_count is not None else len(products),
        raw_items=[{"productid": p.source_local_id, "title": p.title} for p in products],
    )


def make_client(*pages):
    client = MagicMock()
    client.get_recent_items.side_effect = list(pages)
    return client


@pytest.mark.django_db
class TestApiIngestion:
    """Tests for API sources."""

    def test_new_products_are_created(self, duga_source, make_product):
        client = make_client(api_page([make_product(local_id="ppv-0001"), make_product(local_id="ppv-0002")]))

        runner = IngestionRunner(duga_source, IngestionOptions(limit=2), client=client)
        stats = runner.run()

        assert stats.fetched == 2
        assert stats.new_products == 2
        assert stats.raw_saved == 2
        assert CanonicalProduct.objects.count() == 2
        assert RawResponse.objects.filter(processed_at__isnull=False).count() == 2

        run = runner.ingestion_run
        run.refresh_from_db()
        assert run.status == IngestionRunStatus.COMPLETED
        assert run.new_products == 2
        duga_source.refresh_from_db()
        assert duga_source.last_run_status == IngestionRunStatus.COMPLETED
        assert duga_source.next_run_at is not None

    def test_second_run_skips_unchanged_records(self, duga_source, make_product):
        products = [make_product(local_id="ppv-0001"), make_product(local_id="ppv-0002")]
        IngestionRunner(duga_source, IngestionOptions(limit=2), client=make_client(api_page(products))).run()

        stats = IngestionRunner(
            duga_source, IngestionOptions(limit=2), client=make_client(api_page(products))
        ).run()

        assert stats.skipped_unchanged == 2
        assert stats.new_products == 0
        assert CanonicalProduct.objects.count() == 2

    def test_force_reprocess_updates_unchanged_records(self, duga_source, make_product):
        products = [make_product(local_id="ppv-0001")]
        IngestionRunner(duga_source, IngestionOptions(limit=1), client=make_client(api_page(products))).run()

        stats = IngestionRunner(
            duga_source,
            IngestionOptions(limit=1, force_reprocess=True),
            client=make_client(api_page(products)),
        ).run()

        assert stats.updated_products == 1
        assert stats.skipped_unchanged == 0

    def test_pages_until_limit(self, duga_source, make_product):
        client = make_client(
            api_page([make_product(local_id="a-1"), make_product(local_id="a-2")], total_count=10),
            api_page([make_product(local_id="a-3")], total_count=10),
        )
        with patch("ingestion.services.pipeline.API_PAGE_SIZE", 2):
            stats = IngestionRunner(duga_source, IngestionOptions(limit=3, offset=5), client=client).run()

        assert stats.fetched == 3
        assert [c.kwargs for c in client.get_recent_items.call_args_list] == [
            {"limit": 2, "offset": 5},
            {"limit": 1, "offset": 7},
        ]

    def test_sale_is_recorded(self, duga_source, make_product):
        product = make_product(
            price=1980,
            sale_info=SaleInfo(regular_price=1980, sale_price=980, discount_percent=51),
        )

        stats = IngestionRunner(
            duga_source, IngestionOptions(limit=1), client=make_client(api_page([product]))
        ).run()

        assert stats.sales_saved == 1
        assert SaleRecord.objects.get().sale_price == 980

    def test_invalid_sale_does_not_drop_product(self, duga_source, make_product):
        product = make_product(sale_info=SaleInfo(regular_price=980, sale_price=1980, discount_percent=0))

        stats = IngestionRunner(
            duga_source, IngestionOptions(limit=1), client=make_client(api_page([product]))
        ).run()

        assert stats.new_products == 1
        assert stats.sales_saved == 0
        assert SaleRecord.objects.count() == 0

    def test_records_without_id_count_as_invalid(self, duga_source, make_product):
        page = api_page([make_product(local_id="a-1")], total_count=10)
        page.rejected = 1
        client = make_client(page, api_page([make_product(local_id="a-2")], total_count=10))

        with patch("ingestion.services.pipeline.API_PAGE_SIZE", 2):
            stats = IngestionRunner(duga_source, IngestionOptions(limit=3), client=client).run()

        assert stats.fetched == 3
        assert stats.skipped_invalid == 1
        assert stats.new_products == 2
        assert client.get_recent_items.call_args_list[1].kwargs == {"limit": 1, "offset": 2}

    def test_placeholder_title_is_rejected(self, duga_source, make_product):
        client = make_client(api_page([make_product(local_id="ppv-0003", title="duga-ppv-0003")]))

        stats = IngestionRunner(duga_source, IngestionOptions(limit=1), client=client).run()

        assert stats.skipped_invalid == 1
        assert CanonicalProduct.objects.count() == 0

    def test_invalid_performer_names_are_dropped(self, duga_source, make_product):
        product = make_product(performer_names=["山田花子", "---", "真夏の恋物語 第二章"])

        IngestionRunner(duga_source, IngestionOptions(limit=1), client=make_client(api_page([product]))).run()

        assert list(CanonicalProduct.objects.get().performers.values_list("name", flat=True)) == ["山田花子"]

    def test_page_transport_error_counts_and_completes(self, duga_source):
        client = make_client(TransportError("HTTP 503", status_code=503))

        runner = IngestionRunner(duga_source, IngestionOptions(limit=5), client=client)
        stats = runner.run()

        assert stats.errors == 1
        assert runner.ingestion_run.status == IngestionRunStatus.COMPLETED

    def test_item_error_does_not_stop_batch(self, duga_source, make_product):
        client = make_client(api_page([make_product(local_id="a-1"), make_product(local_id="a-2")]))
        real_save = RawResponseStore.save
        calls = []

        def flaky_save(store, source, local_id, *args, **kwargs):
            calls.append(local_id)
            if local_id == "a-1":
                raise RuntimeError("disk full")
            return real_save(store, source, local_id, *args, **kwargs)

        with patch.object(RawResponseStore, "save", flaky_save):
            stats = IngestionRunner(duga_source, IngestionOptions(limit=2), client=client).run()

        assert calls == ["a-1", "a-2"]
        assert stats.errors == 1
        assert stats.new_products == 1

    def test_start_id_uses_item_lookup(self, duga_source, make_product):
        client = MagicMock()
        client.get_item.return_value = make_product(local_id="ppv-0042", raw_data={"productid": "ppv-0042"})

        stats = IngestionRunner(
            duga_source,
            IngestionOptions(start_id="ppv-0042", end_id="ppv-0050"),
            client=client,
        ).run()

        client.get_item.assert_called_once_with("ppv-0042")
        client.get_recent_items.assert_not_called()
        assert stats.new_products == 1

    def test_start_id_not_found(self, duga_source):
        client = MagicMock()
        client.get_item.return_value = None

        stats = IngestionRunner(duga_source, IngestionOptions(start_id="ppv-9999"), client=client).run()

        assert stats.fetched == 0


@pytest.mark.django_db
class TestRunControl:
    """Tests for cancellation, rate limits and configuration errors."""

    def test_cancelled_run_stops_before_next_item(self, duga_source, make_product):
        run = IngestionRun.objects.create(source=duga_source)
        run.request_cancel()
        client = make_client(api_page([make_product(local_id="a-1")]))

        stats = IngestionRunner(duga_source, IngestionOptions(limit=1), run=run, client=client).run()

        run.refresh_from_db()
        assert run.status == IngestionRunStatus.CANCELLED
        assert stats.fetched == 0
        assert CanonicalProduct.objects.count() == 0

    def test_configuration_error_fails_run(self, duga_source):
        client = make_client(ConfigurationError("DUGA_APP_ID and DUGA_AGENT_ID must be set"))
        runner = IngestionRunner(duga_source, IngestionOptions(limit=1), client=client)

        with pytest.raises(ConfigurationError):
            runner.run()

        run = IngestionRun.objects.get(pk=runner.ingestion_run.pk)
        assert run.status == IngestionRunStatus.FAILED
        assert "DUGA_APP_ID" in run.error_message

    def test_missing_credentials_fail_run(self, duga_source):
        with override_settings(DUGA_APP_ID=""):
            runner = IngestionRunner(duga_source, IngestionOptions(limit=1))
            with pytest.raises(ConfigurationError):
                runner.run()

        assert runner.ingestion_run.status == IngestionRunStatus.FAILED

    @override_settings(INGEST_RATE_LIMIT_MAX_WAIT=0)
    def test_rate_limit_beyond_max_wait_stops_batch(self, duga_source):
        client = make_client(RateLimitExceeded("60 requests per 60s", retry_after=50))

        runner = IngestionRunner(duga_source, IngestionOptions(limit=10), client=client)
        runner.run()

        run = IngestionRun.objects.get(pk=runner.ingestion_run.pk)
        assert run.status == IngestionRunStatus.COMPLETED
        assert run.error_message.startswith("rate limited")

    @override_settings(INGEST_RATE_LIMIT_MAX_WAIT=65)
    def test_rate_limit_within_max_wait_pauses(self, duga_source, make_product):
        client = make_client(
            RateLimitExceeded("60 requests per 60s", retry_after=10),
            api_page([make_product(local_id="a-1")]),
        )
        sleep = MagicMock()

        stats = IngestionRunner(duga_source, IngestionOptions(limit=1), client=client, sleep=sleep).run()

        sleep.assert_called_once_with(10)
        assert stats.new_products == 1


@pytest.mark.django_db
class TestCsvIngestion:
    """Tests for the CSV feed path."""

    def test_offset_and_limit_slice_rows(self, b10f_source):
        feed = B10fFeed()
        with patch.object(feed, "download", return_value=CSV_TEXT):
            stats = IngestionRunner(b10f_source, IngestionOptions(limit=1, offset=1), feed=feed).run()

        assert stats.fetched == 1
        assert CanonicalProduct.objects.get().normalized_id == "b10f-1002"

    def test_rows_are_captured_for_reprocessing(self, b10f_source):
        feed = B10fFeed()
        with patch.object(feed, "download", return_value=CSV_TEXT):
            IngestionRunner(b10f_source, IngestionOptions(limit=10), feed=feed).run()

        raw = RawResponse.objects.get(source_local_id="1001")
        assert RawResponseStore().load_json(raw)[0] == "1001"

    def test_id_range_keeps_rows_between_endpoints(self, b10f_source):
        feed = B10fFeed()
        with patch.object(feed, "download", return_value=CSV_TEXT):
            stats = IngestionRunner(
                b10f_source, IngestionOptions(start_id="1001", end_id="1003", limit=100), feed=feed
            ).run()

        assert stats.fetched == 3
        assert set(CanonicalProduct.objects.values_list("normalized_id", flat=True)) == {
            "b10f-1001",
            "b10f-1002",
            "b10f-1003",
        }

    def test_id_range_respects_limit(self, b10f_source):
        feed = B10fFeed()
        with patch.object(feed, "download", return_value=CSV_TEXT):
            stats = IngestionRunner(
                b10f_source, IngestionOptions(start_id="1002", end_id="1004", limit=2), feed=feed
            ).run()

        assert stats.fetched == 2
        assert not CanonicalProduct.objects.filter(normalized_id="b10f-1004").exists()

    def test_non_numeric_id_range_fails_run(self, b10f_source):
        feed = B10fFeed()
        with patch.object(feed, "download", return_value=CSV_TEXT):
            runner = IngestionRunner(b10f_source, IngestionOptions(start_id="abc", limit=10), feed=feed)
            with pytest.raises(ConfigurationError):
                runner.run()

        run = IngestionRun.objects.get(pk=runner.ingestion_run.pk)
        assert run.status == IngestionRunStatus.FAILED

    def test_download_failure(self, b10f_source):
        feed = MagicMock()
        feed.download.side_effect = TransportError("HTTP 500", status_code=500)

        stats = IngestionRunner(b10f_source, IngestionOptions(limit=10), feed=feed).run()

        assert stats.errors == 1
        assert stats.fetched == 0


@pytest.mark.django_db
class TestHtmlIngestion:
    """Tests for the HTML parser path."""

    def test_parse_results_map_to_counters(self, heyzo_source, make_product):
        parser = MagicMock()
        parser.collect_local_ids.return_value = ["3001", "3002", "3003", "3004"]
        parser.parse_detail_page.side_effect = [
            ParseResult(product=make_product("heyzo", "3001")),
            ParseResult(reason="not_product"),
            ParseResult(reason="transport_error"),
            ParseResult(should_skip=True),
        ]

        stats = IngestionRunner(heyzo_source, IngestionOptions(limit=4), parser=parser).run()

        parser.collect_local_ids.assert_called_once_with(4, 0)
        assert stats.fetched == 4
        assert stats.new_products == 1
        assert stats.not_products == 1
        assert stats.errors == 1
        assert stats.skipped_unchanged == 1

    def test_delay_between_items(self, heyzo_source, make_product):
        parser = MagicMock()
        parser.collect_local_ids.return_value = ["3001", "3002", "3003"]
        parser.parse_detail_page.return_value = ParseResult(reason="not_product")
        sleep = MagicMock()

        IngestionRunner(
            heyzo_source, IngestionOptions(limit=3, delay_seconds=0.5), parser=parser, sleep=sleep
        ).run()

        assert sleep.call_count == 2
        sleep.assert_called_with(0.5)

    def test_id_range(self, heyzo_source):
        parser = MagicMock()
        parser.iter_id_range.return_value = iter(["3003", "3002", "3001"])
        parser.parse_detail_page.return_value = ParseResult(reason="not_product")

        stats = IngestionRunner(
            heyzo_source, IngestionOptions(start_id="3003", end_id="3001", limit=2), parser=parser
        ).run()

        parser.iter_id_range.assert_called_once_with("3003", "3001")
        assert stats.fetched == 2


@pytest.mark.django_db
class TestReprocess:
    """Tests for offline reprocessing of stored captures."""

    def test_html_captures_are_reparsed(self, heyzo_source, make_product):
        store = RawResponseStore()
        store.save(heyzo_source, "3001", "https://www.heyzo.com/moviepages/3001/index.html", "<html>1</html>")
        store.save(heyzo_source, "3002", "https://www.heyzo.com/moviepages/3002/index.html", "<html>2</html>")
        parser = MagicMock()
        parser.reparse.side_effect = lambda local_id, html, url: make_product("heyzo", local_id)

        stats = reprocess_raw_responses(heyzo_source, parser=parser)

        assert stats.fetched == 2
        assert stats.new_products == 2
        assert RawResponse.objects.filter(processed_at__isnull=True).count() == 0
        assert IngestionRun.objects.get().options["reprocess"] is True

    def test_only_unprocessed(self, heyzo_source, make_product):
        store = RawResponseStore()
        done = store.save(heyzo_source, "3001", "", "<html>1</html>").raw
        store.mark_processed(done)
        store.save(heyzo_source, "3002", "", "<html>2</html>")
        parser = MagicMock()
        parser.reparse.side_effect = lambda local_id, html, url: make_product("heyzo", local_id)

        stats = reprocess_raw_responses(heyzo_source, only_unprocessed=True, parser=parser)

        assert stats.fetched == 1
        parser.reparse.assert_called_once()
        assert parser.reparse.call_args.args[0] == "3002"

    def test_api_captures_use_client_normalization(self, duga_source):
        RawResponseStore().save(
            duga_source,
            "ppv-0001",
            "",
            {
                "productid": "ppv-0001",
                "title": "真夏の恋物語",
                "affiliateurl": "https://click.duga.jp/ppv-0001/test-agent-01",
                "releasedate": "2024/01/05",
            },
        )

        with override_settings(DUGA_APP_ID="", DUGA_AGENT_ID=""):
            stats = reprocess_raw_responses(duga_source)

        assert stats.new_products == 1
        assert CanonicalProduct.objects.get().title == "真夏の恋物語"

    def test_csv_reprocess_requires_affiliate_id(self, b10f_source):
        with override_settings(B10F_AFFILIATE_ID=""):
            with pytest.raises(ConfigurationError):
                reprocess_raw_responses(b10f_source)

        assert IngestionRun.objects.get().status == IngestionRunStatus.FAILED
