"""
Base class for rate-limited vendor API clients.

Subclasses declare BASE_URL, FIELD_MAPPING and how to unwrap the vendor
response; this class handles the quota guard, transport errors and
record normalization.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests
from django.conf import settings

from ingestion.clients.field_mapping import FieldMapping, normalize_record, to_intermediate
from ingestion.clients.rate_limiter import SlidingWindowRateLimiter
from ingestion.exceptions import TransportError, ValidationRejected
from ingestion.services.product_types import IntermediateProduct

logger = logging.getLogger(__name__)


@dataclass
class ApiSearchResult:
    """One page of vendor search results."""

    items: List[IntermediateProduct] = field(default_factory=list)
    total_count: int = 0
    raw_items: List[Dict[str, Any]] = field(default_factory=list)
    # Records dropped by normalization (e.g. no id); not in items
    rejected: int = 0


class BaseApiClient(ABC):
    """
    Shared request and normalization logic.

    Transport failures are wrapped in TransportError and not retried here;
    retry policy belongs to the job runner.
    """

    SOURCE: str = ""
    BASE_URL: str = ""
    FIELD_MAPPING: FieldMapping = {}
    USER_AGENT = "catalog-ingest/1.0"

    def __init__(
        self,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(name=self.SOURCE)
        self.timeout = timeout or getattr(settings, "INGEST_REQUEST_TIMEOUT", 30)
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", self.USER_AGENT)

    def _make_request(self, params: Dict[str, Any], url: Optional[str] = None) -> Dict[str, Any]:
        """
        Make a rate-limited GET request and decode JSON.

        Raises:
            RateLimitExceeded: Before sending, when the window is full
            TransportError: On network failure, non-2xx or invalid JSON
        """
        url = url or self.BASE_URL
        self.rate_limiter.acquire()

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            logger.error(f"{self.SOURCE} API HTTP {status}: {e}")
            raise TransportError(f"{self.SOURCE} API error: HTTP {status}", status_code=status, url=url) from e
        except requests.RequestException as e:
            logger.error(f"{self.SOURCE} API request failed: {e}")
            raise TransportError(f"{self.SOURCE} API request failed: {e}", url=url) from e

        try:
            return response.json()
        except ValueError as e:
            raise TransportError(
                f"{self.SOURCE} API returned invalid JSON", status_code=response.status_code, url=url
            ) from e

    @classmethod
    def normalize_item(cls, raw_item: Dict[str, Any]) -> IntermediateProduct:
        """
        Map one vendor record to an IntermediateProduct.

        A classmethod so stored captures can be re-normalized without
        credentials.
        """
        fields = normalize_record(raw_item, cls.FIELD_MAPPING)
        return to_intermediate(cls.SOURCE, fields, raw=raw_item)

    def _build_result(self, raw_items: List[Dict[str, Any]], total_count: int) -> ApiSearchResult:
        """Normalize one page, dropping records that fail validation."""
        result = ApiSearchResult(total_count=total_count)
        for raw in raw_items:
            try:
                product = self.normalize_item(raw)
            except ValidationRejected as e:
                logger.info(f"ValidationRejected: {self.SOURCE} API record skipped: {e}")
                result.rejected += 1
                continue
            result.items.append(product)
            result.raw_items.append(raw)
        return result

    @abstractmethod
    def search(self, **params) -> ApiSearchResult:
        """Run a vendor search and return one normalized page."""

    @abstractmethod
    def get_recent_items(self, limit: int = 20, offset: int = 0) -> ApiSearchResult:
        """Newest items first, starting at a zero-based offset."""

    def count(self) -> int:
        """Total catalog size as reported by the vendor."""
        return self.get_recent_items(limit=1, offset=0).total_count

    def get_item(self, source_local_id: str) -> Optional[IntermediateProduct]:
        """Look up one item by id via keyword search."""
        result = self.search(keyword=source_local_id, hits=10)
        for item in result.items:
            if item.source_local_id == source_local_id:
                return item
        return None


def as_int(value) -> int:
    """Vendor counts may be ints, numeric strings or "1,234"."""
    try:
        return int(str(value).replace(",", ""))
    except (TypeError, ValueError):
        return 0
