"""
Cross-source catalog size estimator.

Each source reports its total catalog size through the cheapest signal it
offers:
- ApiCountStrategy: the vendor API's count field
- CsvLineCountStrategy: lines in the CSV dump minus the header
- MaxIdStrategy: highest numeric id linked from the newest listing page
- TextCountStrategy: "全N件" style text on a listing page
- FixedEstimateStrategy: a hard-coded estimate when nothing live exists

Results are cached per source for INGEST_TOTALS_CACHE_TTL seconds. Failures
never propagate: the estimator answers with the last known value (Stale) or
the strategy's fallback estimate (Failed).

Per-source states: NotFetched -> Fetching -> Fresh | Stale | Failed
"""

import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Pattern, Sequence, Tuple

import requests
from django.conf import settings

from ingestion.exceptions import IngestionError

logger = logging.getLogger(__name__)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# Expected probe failures; anything else is logged with a traceback
PROBE_ERRORS = (IngestionError, requests.RequestException, ValueError)


class TotalState(str, Enum):
    NOT_FETCHED = "not_fetched"
    FETCHING = "fetching"
    FRESH = "fresh"
    STALE = "stale"
    FAILED = "failed"


@dataclass
class TotalResult:
    """
    Reported catalog size for one source.

    Attributes:
        source: Source slug
        total: Item count, or None when nothing is known
        origin: Where the number came from, e.g. "DUGA API (count)" or
            "fc2.com (estimate)"
        is_estimate: True for hard-coded fallbacks
        error: Last probe error message, if the value is not live
        state: TotalState value at the time of the answer
    """

    source: str
    total: Optional[int]
    origin: str
    is_estimate: bool = False
    error: Optional[str] = None
    state: TotalState = TotalState.FRESH

    def to_dict(self) -> Dict:
        return {
            "source": self.source,
            "total": self.total,
            "origin": self.origin,
            "is_estimate": self.is_estimate,
            "error": self.error,
            "state": self.state.value,
        }


@dataclass
class CachedTotal:
    result: TotalResult
    fetched_at: float
    state: TotalState = TotalState.FRESH


class TotalsCache:
    """
    Last result per source with a fetch timestamp.

    Args:
        ttl_seconds: How long a live result counts as fresh
        clock: Monotonic time source, injectable for tests
    """

    def __init__(self, ttl_seconds: Optional[float] = None, clock: Optional[Callable[[], float]] = None):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else getattr(
            settings, "INGEST_TOTALS_CACHE_TTL", 3600
        )
        self.clock = clock or time.monotonic
        self._entries: Dict[str, CachedTotal] = {}
        self._states: Dict[str, TotalState] = {}
        self._lock = threading.Lock()

    def get(self, source: str) -> Optional[CachedTotal]:
        with self._lock:
            return self._entries.get(source)

    def is_fresh(self, entry: CachedTotal) -> bool:
        return self.clock() - entry.fetched_at < self.ttl_seconds

    def store(self, result: TotalResult):
        with self._lock:
            self._entries[result.source] = CachedTotal(result=result, fetched_at=self.clock(), state=result.state)
            self._states[result.source] = result.state

    def set_state(self, source: str, state: TotalState):
        with self._lock:
            self._states[source] = state

    def state(self, source: str) -> TotalState:
        with self._lock:
            return self._states.get(source, TotalState.NOT_FETCHED)

    def clear(self):
        with self._lock:
            self._entries.clear()
            self._states.clear()


# Strategies ----------------------------------------------------------------


class TotalStrategy(ABC):
    """
    Probe one source for its catalog size.

    fetch() performs at most one network request and returns
    (total, origin); it raises on failure.
    """

    site: str = ""
    fallback_estimate: Optional[int] = None

    @abstractmethod
    def fetch(self) -> Tuple[int, str]:
        """Return (total, origin) for the source."""

    def estimate_origin(self) -> str:
        return f"{self.site} (estimate)"


class HttpStrategy(TotalStrategy):
    """Strategy that downloads one page with requests."""

    def __init__(
        self,
        url: str,
        site: str,
        fallback_estimate: Optional[int] = None,
        cookies: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ):
        self.url = url
        self.site = site
        self.fallback_estimate = fallback_estimate
        self.cookies = cookies or {}
        self.session = session or requests.Session()
        self.timeout = timeout or getattr(settings, "INGEST_REQUEST_TIMEOUT", 30)

    def download(self) -> str:
        response = self.session.get(
            self.url,
            cookies=self.cookies,
            headers={"User-Agent": BROWSER_USER_AGENT, "Accept-Language": "ja"},
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.text


class ApiCountStrategy(TotalStrategy):
    """Use the vendor API's count field (one hits=1 request)."""

    def __init__(self, client_factory: Callable, site: str, label: str, fallback_estimate: Optional[int] = None):
        self.client_factory = client_factory
        self.site = site
        self.label = label
        self.fallback_estimate = fallback_estimate

    def fetch(self) -> Tuple[int, str]:
        total = self.client_factory().count()
        if total <= 0:
            raise ValueError(f"{self.label} returned no count")
        return total, self.label


class CsvLineCountStrategy(TotalStrategy):
    """Count data rows in the CSV dump."""

    def __init__(self, feed_factory: Callable, site: str, fallback_estimate: Optional[int] = None):
        self.feed_factory = feed_factory
        self.site = site
        self.fallback_estimate = fallback_estimate

    def fetch(self) -> Tuple[int, str]:
        total = self.feed_factory().count_rows()
        if total <= 0:
            raise ValueError(f"{self.site} CSV is empty")
        return total, f"{self.site} CSV ({total:,} rows)"


class MaxIdStrategy(HttpStrategy):
    """
    Highest numeric id linked from the newest listing page.

    When no plausible id is found, the highest page number in the
    pagination times page_size is used instead.
    """

    def __init__(
        self,
        url: str,
        site: str,
        id_pattern: Pattern,
        min_plausible: int = 1,
        page_pattern: Optional[Pattern] = None,
        page_size: int = 0,
        min_pages: int = 1,
        **kwargs,
    ):
        super().__init__(url, site, **kwargs)
        self.id_pattern = id_pattern
        self.min_plausible = min_plausible
        self.page_pattern = page_pattern
        self.page_size = page_size
        self.min_pages = min_pages

    def fetch(self) -> Tuple[int, str]:
        html = self.download()
        ids = [int(m) for m in self.id_pattern.findall(html)]
        max_id = max(ids, default=0)
        if max_id >= self.min_plausible:
            return max_id, f"{self.site} (max id {max_id})"

        if self.page_pattern is not None and self.page_size:
            max_page = max((int(p) for p in self.page_pattern.findall(html)), default=0)
            if max_page >= self.min_pages:
                return max_page * self.page_size, f"{self.site} ({max_page} pages x {self.page_size})"

        raise ValueError(f"{self.site}: no ids found on listing page")


class TextCountStrategy(HttpStrategy):
    """First matching "total items" regex on a listing page."""

    def __init__(
        self,
        url: str,
        site: str,
        patterns: Sequence[Pattern],
        min_plausible: int = 1,
        last_page_pattern: Optional[Pattern] = None,
        page_size: int = 0,
        **kwargs,
    ):
        super().__init__(url, site, **kwargs)
        self.patterns = list(patterns)
        self.min_plausible = min_plausible
        self.last_page_pattern = last_page_pattern
        self.page_size = page_size

    def fetch(self) -> Tuple[int, str]:
        html = self.download()
        for pattern in self.patterns:
            match = pattern.search(html)
            if match:
                total = int(match.group(1).replace(",", ""))
                if total >= self.min_plausible:
                    return total, f"{self.site} (listing count)"

        if self.last_page_pattern is not None and self.page_size:
            match = self.last_page_pattern.search(html)
            if match:
                last_page = int(match.group(1))
                return last_page * self.page_size, f"{self.site} ({last_page} pages x {self.page_size})"

        raise ValueError(f"{self.site}: total count pattern not found")


class FixedEstimateStrategy(TotalStrategy):
    """No live signal; always answers with the estimate."""

    def __init__(self, site: str, estimate: int):
        self.site = site
        self.fallback_estimate = estimate

    def fetch(self) -> Tuple[int, str]:
        return self.fallback_estimate, self.estimate_origin()


# Estimator -----------------------------------------------------------------


class TotalsEstimator:
    """
    Answer total-count requests from the cache or a single probe.

    Usage:
        estimator = get_totals_estimator()
        result = estimator.get_total("duga")
        results = estimator.get_all(force_refresh=True)
    """

    def __init__(self, strategies: Dict[str, TotalStrategy], cache: Optional[TotalsCache] = None):
        self.strategies = strategies
        self.cache = cache or TotalsCache()

    def sources(self) -> List[str]:
        return list(self.strategies)

    def get_total(self, source: str, force_refresh: bool = False) -> TotalResult:
        """
        Total for one source.

        Args:
            source: Source slug
            force_refresh: Probe even when the cached value is fresh

        Returns:
            TotalResult; never raises for probe failures

        Raises:
            ValueError: If the source has no strategy
        """
        strategy = self.strategies.get(source)
        if strategy is None:
            raise ValueError(f"No total strategy for source: {source}")

        entry = self.cache.get(source)
        if entry is not None and not force_refresh and self.cache.is_fresh(entry):
            return entry.result

        self.cache.set_state(source, TotalState.FETCHING)
        try:
            total, origin = strategy.fetch()
        except PROBE_ERRORS as e:
            logger.warning(f"Total count probe failed for {source}: {e}")
            result = self._fallback(source, strategy, entry, str(e))
        except Exception as e:
            logger.exception(f"Unexpected error probing total for {source}: {e}")
            result = self._fallback(source, strategy, entry, f"{type(e).__name__}: {e}")
        else:
            result = TotalResult(
                source=source,
                total=total,
                origin=origin,
                is_estimate=isinstance(strategy, FixedEstimateStrategy),
                state=TotalState.FRESH,
            )

        self.cache.store(result)
        return result

    def _fallback(
        self,
        source: str,
        strategy: TotalStrategy,
        entry: Optional[CachedTotal],
        error: str,
    ) -> TotalResult:
        if entry is not None and entry.result.total is not None:
            previous = entry.result
            return TotalResult(
                source=source,
                total=previous.total,
                origin=previous.origin,
                is_estimate=previous.is_estimate,
                error=error,
                state=TotalState.STALE,
            )
        return TotalResult(
            source=source,
            total=strategy.fallback_estimate,
            origin=strategy.estimate_origin() if strategy.fallback_estimate is not None else "unavailable",
            is_estimate=strategy.fallback_estimate is not None,
            error=error,
            state=TotalState.FAILED,
        )

    def get_all(self, force_refresh: bool = False) -> List[TotalResult]:
        return [self.get_total(source, force_refresh=force_refresh) for source in self.strategies]

    def state(self, source: str) -> TotalState:
        return self.cache.state(source)


def default_strategies() -> Dict[str, TotalStrategy]:
    """Strategy per registered source."""
    from ingestion.sources import get_api_client, get_csv_feed

    return {
        "duga": ApiCountStrategy(lambda: get_api_client("duga"), "duga.jp", "DUGA API (count)"),
        "sokmil": ApiCountStrategy(
            lambda: get_api_client("sokmil"), "sokmil.com", "Sokmil API (total_count)", fallback_estimate=150000
        ),
        "b10f": CsvLineCountStrategy(lambda: get_csv_feed("b10f"), "b10f.jp"),
        "mgs": TextCountStrategy(
            "https://www.mgstage.com/search/cSearch.php?search_word=&sort=new&list_cnt=30",
            "mgstage.com",
            patterns=[
                re.compile(r"全\s*([\d,]+)\s*件"),
                re.compile(r"約\s*([\d,]+)\s*件"),
                re.compile(r"([\d,]+)\s*件の商品"),
                re.compile(r"検索結果[：:]\s*([\d,]+)"),
            ],
            min_plausible=10000,
            last_page_pattern=re.compile(r"page=(\d+)[^>]*>\s*(?:最後|Last|»)", re.IGNORECASE),
            page_size=30,
            cookies={"adc": "1"},
        ),
        "japanska": MaxIdStrategy(
            "https://www.japanska-xxx.com/category/list_0.html",
            "japanska-xxx.com",
            id_pattern=re.compile(r"movie/detail_(\d+)\.html"),
            min_plausible=1000,
            page_pattern=re.compile(r"list_(\d+)\.html"),
            page_size=30,
            min_pages=11,
            fallback_estimate=37000,
        ),
        "heyzo": MaxIdStrategy(
            "https://www.heyzo.com/listpages/all_1.html",
            "heyzo.com",
            id_pattern=re.compile(r"/moviepages/(\d+)/"),
            page_pattern=re.compile(r"all_(\d+)\.html"),
            page_size=12,
        ),
        "caribbeancom": TextCountStrategy(
            "https://www.caribbeancom.com/listpages/all1.htm",
            "caribbeancom.com",
            patterns=[re.compile(r"全\s*([\d,]+)\s*(?:件|本)"), re.compile(r"([\d,]+)\s*本(?:以上|公開)")],
            min_plausible=100,
            last_page_pattern=re.compile(r"all(\d+)\.htm[^>]*>\s*(?:最後|Last|»)", re.IGNORECASE),
            page_size=50,
            fallback_estimate=4500,
        ),
        "caribbeancompr": FixedEstimateStrategy("caribbeancompr.com", 6000),
        "10musume": FixedEstimateStrategy("10musume.com", 3500),
        "pacopacomama": FixedEstimateStrategy("pacopacomama.com", 3000),
        "fc2": FixedEstimateStrategy("fc2.com", 500000),
    }


_estimator: Optional[TotalsEstimator] = None
_estimator_lock = threading.Lock()


def get_totals_estimator() -> TotalsEstimator:
    """Process-wide estimator (created on first use)."""
    global _estimator
    with _estimator_lock:
        if _estimator is None:
            _estimator = TotalsEstimator(default_strategies(), TotalsCache())
        return _estimator


def reset_totals_estimator():
    """Drop the process-wide estimator (tests and settings changes)."""
    global _estimator
    with _estimator_lock:
        _estimator = None
