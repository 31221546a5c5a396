"""
Base Parser for scraped HTML sources.

A parser owns one source family: how to build detail and listing URLs, how
to tell a real detail page from a redirect or placeholder, and an ordered
cascade of extraction patterns per field. The pure extract() method turns
saved HTML into an IntermediateProduct and is what the unit tests exercise;
parse_detail_page() wraps it with fetching, classification and raw capture.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Pattern, Tuple

from asgiref.sync import async_to_sync
from bs4 import BeautifulSoup

from ingestion.exceptions import NotAProduct, TransportError
from ingestion.fetchers.page_fetcher import FetchResponse, PageFetcher
from ingestion.models import CatalogSource, RawResponse
from ingestion.parsers.classifier import PageClassifier
from ingestion.services.names import is_valid_for_product, parse_performer_name
from ingestion.services.product_types import IntermediateProduct
from ingestion.services.raw_store import RawResponseStore
from ingestion.utils.normalization import clean_text

logger = logging.getLogger(__name__)


@dataclass
class ParseResult:
    """
    Result of parse_detail_page.

    Attributes:
        product: Extracted record, or None
        raw_response: The stored capture, when one was written
        should_skip: Content unchanged since the last processed capture
        reason: Why product is None ("not_product", "transport_error",
            "parse_error") or empty
    """

    product: Optional[IntermediateProduct] = None
    raw_response: Optional[RawResponse] = None
    should_skip: bool = False
    reason: str = ""


@dataclass
class SessionState:
    """
    Cookie and Referer continuity between requests of one run.

    Cookies set by the server are replayed on the next request and the
    previously fetched URL is sent as Referer.
    """

    cookies: Dict[str, str] = field(default_factory=dict)
    last_url: Optional[str] = None
    warmed_up: bool = False

    def request_headers(self) -> Dict[str, str]:
        if self.last_url:
            return {"Referer": self.last_url}
        return {}

    def update(self, response: FetchResponse):
        if response.cookies:
            self.cookies.update(response.cookies)
        if response.success:
            self.last_url = response.url or self.last_url


Extractor = Callable[[BeautifulSoup, str], object]


class Cascade:
    """
    Ordered "try pattern, take first match" extractors for one field.

    Usage:
        title = Cascade("title", [
            ("h1", lambda soup, html: ...),
            ("og_title", lambda soup, html: ...),
        ])
        value, matched_by = title.run(soup, html)
    """

    def __init__(self, field_name: str, extractors: List[Tuple[str, Extractor]]):
        self.field_name = field_name
        self.extractors = extractors

    def run(self, soup: BeautifulSoup, html: str) -> Tuple[Optional[object], Optional[str]]:
        """
        Run extractors in order.

        Returns:
            (value, extractor_name) of the first non-empty result, or
            (None, None) when nothing matched
        """
        for name, extractor in self.extractors:
            value = extractor(soup, html)
            if value not in (None, "", [], {}):
                logger.debug(f"{self.field_name} matched by {name}")
                return value, name
        return None, None

    def value(self, soup: BeautifulSoup, html: str):
        return self.run(soup, html)[0]


# Shared extractor helpers ------------------------------------------------

def text_of(element) -> Optional[str]:
    if element is None:
        return None
    text = re.sub(r"\s+", " ", element.get_text(" ", strip=True).replace("　", " ")).strip()
    return text or None


def meta_content(soup: BeautifulSoup, prop: str) -> Optional[str]:
    tag = soup.find("meta", attrs={"property": prop}) or soup.find("meta", attrs={"name": prop})
    if tag and tag.get("content"):
        return tag["content"].strip() or None
    return None


def absolute_url(url: Optional[str], base: str) -> Optional[str]:
    if not url:
        return None
    url = url.strip()
    if url.startswith("//"):
        return f"https:{url}"
    if url.startswith("/"):
        return f"{base.rstrip('/')}{url}"
    if url.startswith("http"):
        return url
    return None


def unique(values: Iterable[Optional[str]]) -> List[str]:
    result = []
    for value in values:
        if value and value not in result:
            result.append(value)
    return result


def th_cell(soup: BeautifulSoup, label: str):
    """The <td> following the first <th> whose text contains label."""
    for th in soup.find_all("th"):
        if label in th.get_text():
            return th.find_next_sibling("td")
    return None


def performer_candidates(raw_names: Iterable[str], title: Optional[str]) -> List[str]:
    """
    Keep raw performer strings that pass name validation.

    The raw text is returned (not the normalized name) so a parenthesised
    reading or alias list is still available to enrichment.
    """
    result = []
    seen = set()
    for raw in raw_names:
        parsed = parse_performer_name(raw)
        if parsed is None or not is_valid_for_product(parsed.name, title):
            logger.debug(f"ValidationRejected: performer {raw!r}")
            continue
        key = parsed.name.casefold()
        if key not in seen:
            seen.add(key)
            result.append(clean_text(raw))
    return result


class BaseParser(ABC):
    """
    Abstract base class for HTML source parsers.

    Subclasses set the class attributes and implement extract().
    """

    SOURCE: str = ""
    BASE_URL: str = ""
    DETAIL_URL: str = ""
    LIST_URL: str = ""
    LIST_PAGE_SIZE: int = 0
    LIST_ID_PATTERNS: List[Pattern] = []
    MAX_LIST_PAGES: int = 50
    ENCODING: Optional[str] = None
    SESSION_WARMUP_URL: Optional[str] = None

    classifier: PageClassifier = PageClassifier()

    def __init__(
        self,
        source: Optional[CatalogSource] = None,
        fetcher=None,
        raw_store=None,
    ):
        """
        Args:
            source: CatalogSource row; required for parse_detail_page
            fetcher: Object with an async fetch() like PageFetcher; a fresh
                PageFetcher is used per request when omitted
            raw_store: RawResponseStore (default instance when omitted)
        """
        self.source = source
        self.fetcher = fetcher
        if raw_store is None and source is not None:
            raw_store = RawResponseStore()
        self.raw_store = raw_store
        self.session = SessionState()

    # URLs ---------------------------------------------------------------

    def detail_url(self, local_id: str) -> str:
        return self.DETAIL_URL.format(id=local_id)

    def list_url(self, page: int) -> str:
        return self.LIST_URL.format(page=page)

    # Fetching -----------------------------------------------------------

    def _source_cookies(self) -> Dict[str, str]:
        if self.source is not None and self.source.default_cookies:
            return dict(self.source.default_cookies)
        return {}

    async def _fetch_async(self, url: str, cookies: Dict[str, str], headers: Dict[str, str]) -> FetchResponse:
        if self.fetcher is not None:
            return await self.fetcher.fetch(
                url, cookies=cookies, custom_headers=headers, encoding=self.ENCODING
            )
        async with PageFetcher() as fetcher:
            return await fetcher.fetch(
                url, cookies=cookies, custom_headers=headers, encoding=self.ENCODING
            )

    def fetch(self, url: str) -> FetchResponse:
        """
        Fetch a page, replaying session cookies and Referer.

        Returns:
            FetchResponse (never raises for HTTP or network failures)
        """
        self.ensure_session()
        cookies = {**self._source_cookies(), **self.session.cookies}
        response = async_to_sync(self._fetch_async)(url, cookies, self.session.request_headers())
        self.session.update(response)
        return response

    def ensure_session(self):
        """Fetch SESSION_WARMUP_URL once per run to obtain session cookies."""
        if not self.SESSION_WARMUP_URL or self.session.warmed_up:
            return
        self.session.warmed_up = True
        response = async_to_sync(self._fetch_async)(
            self.SESSION_WARMUP_URL, self._source_cookies(), {}
        )
        self.session.update(response)
        if not response.success:
            logger.warning(f"{self.SOURCE} session warm-up failed: {response.error}")

    # Listing ------------------------------------------------------------

    def extract_list_ids(self, html: str) -> List[str]:
        """Apply LIST_ID_PATTERNS in order; the first pattern with matches wins."""
        for pattern in self.LIST_ID_PATTERNS:
            ids = unique(pattern.findall(html))
            if ids:
                return ids
        return []

    def collect_local_ids(self, limit: int, offset: int = 0) -> List[str]:
        """
        Scrape listing pages for item ids.

        Args:
            limit: Number of ids wanted
            offset: Ids to skip from the newest

        Returns:
            Up to `limit` ids in listing order
        """
        if not self.LIST_URL:
            return []

        page = 1
        skip = offset
        if self.LIST_PAGE_SIZE:
            page = offset // self.LIST_PAGE_SIZE + 1
            skip = offset % self.LIST_PAGE_SIZE

        ids: List[str] = []
        pages_read = 0
        while len(ids) < skip + limit and pages_read < self.MAX_LIST_PAGES:
            response = self.fetch(self.list_url(page))
            pages_read += 1
            if not response.success:
                logger.warning(f"TransportError: {self.SOURCE} list page {page}: {response.error}")
                break
            page_ids = [i for i in self.extract_list_ids(response.content) if i not in ids]
            if not page_ids:
                break
            ids.extend(page_ids)
            page += 1

        return ids[skip:skip + limit]

    def iter_id_range(self, start_id: str, end_id: str) -> Iterator[str]:
        """
        Ids between start_id and end_id inclusive, in the given direction.

        Raises:
            ValueError: If the source's ids are not numeric
        """
        start, end = int(start_id), int(end_id)
        step = -1 if start > end else 1
        for number in range(start, end + step, step):
            yield str(number)

    # Detail pages -------------------------------------------------------

    def parse_detail_page(self, local_id: str, force_reprocess: bool = False) -> ParseResult:
        """
        Fetch, classify, capture and extract one detail page.

        Expected failures (transport errors, not-a-product pages, parse
        exceptions) are logged and returned as ParseResult(product=None).

        Args:
            local_id: Source-local item id
            force_reprocess: Extract even if the capture is unchanged

        Returns:
            ParseResult
        """
        url = self.detail_url(local_id)
        response = self.fetch(url)

        if not response.success:
            error = TransportError(response.error or "fetch failed", response.status_code, url)
            logger.warning(f"TransportError: {self.SOURCE}:{local_id} {error}")
            return ParseResult(reason="transport_error")

        classification = self.classifier.classify(response.content, url, response.url)
        if not classification.is_product:
            logger.info(f"NotAProduct: {self.SOURCE}:{local_id} ({classification.reason})")
            return ParseResult(reason="not_product")

        raw = None
        if self.raw_store is not None and self.source is not None:
            saved = self.raw_store.save(self.source, local_id, url, response.content, force=force_reprocess)
            raw = saved.raw
            if saved.should_skip:
                logger.debug(f"{self.SOURCE}:{local_id} unchanged, skipping extraction")
                return ParseResult(raw_response=raw, should_skip=True)

        try:
            product = self.extract(local_id, response.content, url)
        except NotAProduct as e:
            logger.info(f"NotAProduct: {self.SOURCE}:{local_id} ({e.reason})")
            return ParseResult(raw_response=raw, reason="not_product")
        except Exception as e:
            logger.exception(f"Parse error for {self.SOURCE}:{local_id}: {e}")
            return ParseResult(raw_response=raw, reason="parse_error")

        return ParseResult(product=product, raw_response=raw)

    def reparse(self, local_id: str, html: str, url: str = "") -> IntermediateProduct:
        """
        Re-derive a product from a stored capture without network access.

        Raises:
            NotAProduct: If the stored page does not classify as a detail page
        """
        classification = self.classifier.classify(html)
        if not classification.is_product:
            raise NotAProduct(classification.reason)
        return self.extract(local_id, html, url or self.detail_url(local_id))

    @staticmethod
    def soup(html: str) -> BeautifulSoup:
        return BeautifulSoup(html, "lxml")

    @abstractmethod
    def extract(self, local_id: str, html: str, url: str) -> IntermediateProduct:
        """
        Extract an IntermediateProduct from a detail page.

        Raises:
            NotAProduct: If required content (title) is missing
        """


def get_parser(source: str, **kwargs) -> BaseParser:
    """
    Factory function to get a parser by source slug.

    Args:
        source: Source slug (case-insensitive), e.g. 'mgs', 'japanska', 'heyzo'
        **kwargs: Passed to the parser constructor

    Returns:
        Parser instance for the source

    Raises:
        ValueError: If the source has no HTML parser
    """
    # Import here to avoid circular imports
    from .dti import DTI_PARSERS
    from .fc2 import Fc2Parser
    from .japanska import JapanskaParser
    from .mgs import MgsParser

    parsers = {
        "mgs": MgsParser,
        "japanska": JapanskaParser,
        "fc2": Fc2Parser,
        **DTI_PARSERS,
    }

    source_lower = source.lower()
    if source_lower not in parsers:
        raise ValueError(f"Unknown source: {source}. Available sources: {sorted(parsers.keys())}")

    return parsers[source_lower](**kwargs)
