"""
Tests for the cross-source total estimator.
"""

import re
from unittest.mock import MagicMock

import httpx
import pytest
import requests
import responses

from ingestion.exceptions import TransportError
from ingestion.services.totals import (
    ApiCountStrategy,
    CsvLineCountStrategy,
    FixedEstimateStrategy,
    MaxIdStrategy,
    TextCountStrategy,
    TotalsCache,
    TotalsEstimator,
    TotalState,
    TotalStrategy,
    default_strategies,
    get_totals_estimator,
    reset_totals_estimator,
)


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class CountingStrategy(TotalStrategy):
    """Returns queued results (or raises queued exceptions) and counts calls."""

    def __init__(self, *results, site="example.com", fallback_estimate=None):
        self.results = list(results)
        self.site = site
        self.fallback_estimate = fallback_estimate
        self.calls = 0

    def fetch(self):
        self.calls += 1
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result, f"{self.site} (live)"


def make_estimator(strategy, ttl=3600):
    clock = FakeClock()
    estimator = TotalsEstimator({"duga": strategy}, TotalsCache(ttl_seconds=ttl, clock=clock))
    return estimator, clock


class TestTotalsEstimatorCaching:
    """Tests for cache freshness and refresh behavior."""

    def test_fresh_cache_makes_no_network_call(self):
        strategy = CountingStrategy(1000)
        estimator, clock = make_estimator(strategy)

        first = estimator.get_total("duga")
        clock.now = 3599
        second = estimator.get_total("duga")

        assert first.total == second.total == 1000
        assert strategy.calls == 1
        assert estimator.state("duga") == TotalState.FRESH

    def test_expired_cache_probes_again(self):
        strategy = CountingStrategy(1000, 1200)
        estimator, clock = make_estimator(strategy)

        estimator.get_total("duga")
        clock.now = 3600
        result = estimator.get_total("duga")

        assert result.total == 1200
        assert strategy.calls == 2

    def test_force_refresh_probes_exactly_once(self):
        strategy = CountingStrategy(1000, 1100)
        estimator, _ = make_estimator(strategy)

        estimator.get_total("duga")
        result = estimator.get_total("duga", force_refresh=True)

        assert result.total == 1100
        assert strategy.calls == 2

    def test_unknown_source(self):
        estimator, _ = make_estimator(CountingStrategy(1))
        with pytest.raises(ValueError):
            estimator.get_total("nope")

    def test_initial_state(self):
        estimator, _ = make_estimator(CountingStrategy(1))
        assert estimator.state("duga") == TotalState.NOT_FETCHED


class TestTotalsEstimatorFailures:
    """Probe failures degrade instead of raising."""

    def test_failure_after_success_is_stale(self):
        strategy = CountingStrategy(1000, TransportError("HTTP 503", status_code=503))
        estimator, _ = make_estimator(strategy)

        estimator.get_total("duga")
        result = estimator.get_total("duga", force_refresh=True)

        assert result.total == 1000
        assert result.state == TotalState.STALE
        assert "503" in result.error
        assert estimator.state("duga") == TotalState.STALE

    def test_failure_without_history_uses_fallback(self):
        strategy = CountingStrategy(requests.ConnectionError("down"), fallback_estimate=4500)
        estimator, _ = make_estimator(strategy)

        result = estimator.get_total("duga")

        assert result.total == 4500
        assert result.is_estimate is True
        assert result.origin == "example.com (estimate)"
        assert result.state == TotalState.FAILED

    def test_failure_without_fallback(self):
        strategy = CountingStrategy(ValueError("no count"))
        estimator, _ = make_estimator(strategy)

        result = estimator.get_total("duga")

        assert result.total is None
        assert result.origin == "unavailable"
        assert result.state == TotalState.FAILED

    @pytest.mark.parametrize(
        "error", [KeyError("total"), httpx.ConnectError("refused"), AttributeError("NoneType")]
    )
    def test_unexpected_count_error_uses_fallback(self, error):
        strategy = CountingStrategy(error, fallback_estimate=4500)
        estimator, _ = make_estimator(strategy)

        result = estimator.get_total("duga")

        assert result.total == 4500
        assert result.state == TotalState.FAILED
        assert type(error).__name__ in result.error

    def test_failed_result_is_cached(self):
        """A failed probe is not retried until the TTL expires."""
        strategy = CountingStrategy(ValueError("no count"), 10)
        estimator, _ = make_estimator(strategy)

        estimator.get_total("duga")
        estimator.get_total("duga")

        assert strategy.calls == 1

    def test_get_all(self):
        estimator = TotalsEstimator(
            {
                "duga": CountingStrategy(1000),
                "fc2": FixedEstimateStrategy("fc2.com", 500000),
            },
            TotalsCache(clock=FakeClock()),
        )

        results = {r.source: r for r in estimator.get_all()}

        assert results["duga"].total == 1000
        assert results["fc2"].total == 500000
        assert results["fc2"].is_estimate is True
        assert results["fc2"].origin == "fc2.com (estimate)"


class TestStrategies:
    """Tests for the per-source probes."""

    def test_strategy_base_is_abstract(self):
        with pytest.raises(TypeError):
            TotalStrategy()

    def test_api_count(self):
        client = MagicMock()
        client.count.return_value = 185871
        strategy = ApiCountStrategy(lambda: client, "duga.jp", "DUGA API (count)")

        assert strategy.fetch() == (185871, "DUGA API (count)")

    def test_api_zero_count_is_an_error(self):
        client = MagicMock()
        client.count.return_value = 0
        with pytest.raises(ValueError):
            ApiCountStrategy(lambda: client, "duga.jp", "DUGA API (count)").fetch()

    def test_csv_line_count(self):
        feed = MagicMock()
        feed.count_rows.return_value = 12345
        total, origin = CsvLineCountStrategy(lambda: feed, "b10f.jp").fetch()
        assert total == 12345
        assert origin == "b10f.jp CSV (12,345 rows)"

    @responses.activate
    def test_max_id(self):
        responses.add(
            responses.GET,
            "https://www.heyzo.com/listpages/all_1.html",
            body='<a href="/moviepages/3455/index.html"></a><a href="/moviepages/3456/index.html"></a>',
        )
        strategy = MaxIdStrategy(
            "https://www.heyzo.com/listpages/all_1.html",
            "heyzo.com",
            id_pattern=re.compile(r"/moviepages/(\d+)/"),
        )

        assert strategy.fetch() == (3456, "heyzo.com (max id 3456)")

    @responses.activate
    def test_max_id_page_fallback(self):
        responses.add(
            responses.GET,
            "https://www.japanska-xxx.com/category/list_0.html",
            body='<a href="movie/detail_12.html"></a><a href="list_2.html">2</a><a href="list_1200.html">last</a>',
        )
        strategy = MaxIdStrategy(
            "https://www.japanska-xxx.com/category/list_0.html",
            "japanska-xxx.com",
            id_pattern=re.compile(r"movie/detail_(\d+)\.html"),
            min_plausible=1000,
            page_pattern=re.compile(r"list_(\d+)\.html"),
            page_size=30,
            min_pages=11,
        )

        assert strategy.fetch() == (36000, "japanska-xxx.com (1200 pages x 30)")

    @responses.activate
    def test_text_count(self):
        responses.add(responses.GET, "https://www.mgstage.com/search", body="<p>検索結果 全 123,456 件</p>")
        strategy = TextCountStrategy(
            "https://www.mgstage.com/search",
            "mgstage.com",
            patterns=[re.compile(r"全\s*([\d,]+)\s*件")],
            min_plausible=10000,
        )

        assert strategy.fetch() == (123456, "mgstage.com (listing count)")

    @responses.activate
    def test_text_count_implausible_value(self):
        responses.add(responses.GET, "https://www.mgstage.com/search", body="<p>全 30 件</p>")
        strategy = TextCountStrategy(
            "https://www.mgstage.com/search",
            "mgstage.com",
            patterns=[re.compile(r"全\s*([\d,]+)\s*件")],
            min_plausible=10000,
        )

        with pytest.raises(ValueError):
            strategy.fetch()

    @responses.activate
    def test_http_error_propagates_to_estimator(self):
        responses.add(responses.GET, "https://www.caribbeancom.com/listpages/all1.htm", status=500)
        strategy = TextCountStrategy(
            "https://www.caribbeancom.com/listpages/all1.htm",
            "caribbeancom.com",
            patterns=[re.compile(r"全\s*([\d,]+)\s*件")],
            fallback_estimate=4500,
        )
        estimator = TotalsEstimator({"caribbeancom": strategy}, TotalsCache(clock=FakeClock()))

        result = estimator.get_total("caribbeancom")

        assert result.total == 4500
        assert result.state == TotalState.FAILED


class TestDefaultStrategies:
    """Tests for the registered source strategies."""

    def test_every_source_has_a_strategy(self):
        assert set(default_strategies()) == {
            "duga",
            "sokmil",
            "b10f",
            "mgs",
            "japanska",
            "heyzo",
            "caribbeancom",
            "caribbeancompr",
            "10musume",
            "pacopacomama",
            "fc2",
        }

    def test_process_wide_estimator(self):
        reset_totals_estimator()
        try:
            assert get_totals_estimator() is get_totals_estimator()
        finally:
            reset_totals_estimator()
