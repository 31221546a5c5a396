"""
Sokmil affiliate API client.

- Endpoint: https://sokmil-ad.com/api/v1/Item
- Response: {"result": {"status": "200", "total_count": "...", "items": [...]}}
- Offsets are one-based (max 50000), hits up to 100
"""

import logging
from typing import Optional

from django.conf import settings

from ingestion.clients.base import ApiSearchResult, BaseApiClient, as_int
from ingestion.clients.field_mapping import FieldRule
from ingestion.exceptions import ConfigurationError, TransportError

logger = logging.getLogger(__name__)

MAX_OFFSET = 50000

SOKMIL_FIELD_MAPPING = {
    "source_local_id": FieldRule(("id", "item_id"), "id"),
    "title": FieldRule(("title", "item_name")),
    "description": FieldRule(("description", "comment")),
    "affiliate_url": FieldRule(("affiliateURL", "affiliate_url"), "url"),
    "url": FieldRule(("URL", "url"), "url"),
    "release_date": FieldRule(("date", "release_date"), "date"),
    "duration_minutes": FieldRule(("volume",), "minutes"),
    "thumbnail_url": FieldRule(("imageURL.large", "imageURL.list", "imageURL.small"), "url"),
    "sample_image_urls": FieldRule(
        (
            "sampleImageURL.image[]",
            "sampleImageURL[]",
            "sample_image_url.image[]",
            "sample_image_url[]",
        ),
        "url_list",
    ),
    "sample_video_urls": FieldRule(
        ("sampleMovieURL", "sampleVideoURL", "sample_movie_url"), "url_list"
    ),
    "price": FieldRule(("prices.price", "price"), "price"),
    "list_price": FieldRule(("prices.list_price", "prices.listprice"), "price"),
    "performer_names": FieldRule(("iteminfo.actor[].name",), "name_list"),
    "genre_names": FieldRule(("iteminfo.genre[].name",), "name_list"),
}


class SokmilClient(BaseApiClient):
    """
    Client for the Sokmil Item search API.

    Usage:
        client = SokmilClient()
        result = client.get_recent_items(limit=100, offset=0)
    """

    SOURCE = "sokmil"
    BASE_URL = "https://sokmil-ad.com/api/v1/Item"
    FIELD_MAPPING = SOKMIL_FIELD_MAPPING
    USER_AGENT = "Sokmil-API-Client/1.0"

    def __init__(self, api_key: Optional[str] = None, affiliate_id: Optional[str] = None, **kwargs):
        """
        Initialize Sokmil client.

        Raises:
            ConfigurationError: If the API key or affiliate id is missing
        """
        super().__init__(**kwargs)
        self.api_key = api_key or getattr(settings, "SOKMIL_API_KEY", None)
        self.affiliate_id = affiliate_id or getattr(settings, "SOKMIL_AFFILIATE_ID", None)

        if not self.api_key or not self.affiliate_id:
            raise ConfigurationError("SOKMIL_API_KEY and SOKMIL_AFFILIATE_ID not configured")

    def search(self, **params) -> ApiSearchResult:
        """
        Search Sokmil items.

        Args:
            **params: hits, offset (one-based), sort, category, keyword,
                article/article_id, gte_date/lte_date

        Raises:
            RateLimitExceeded: If the client-side window is full
            TransportError: On network errors or a non-200 result status
        """
        request_params = {
            "affiliate_id": self.affiliate_id,
            "api_key": self.api_key,
            "output": "json",
        }
        request_params.update({k: v for k, v in params.items() if v is not None})

        data = self._make_request(request_params)
        result = data.get("result", data)

        if str(result.get("status", "200")) != "200":
            message = result.get("error") or data.get("message") or "unknown error"
            raise TransportError(f"sokmil API error: {message}", url=self.BASE_URL)

        raw_items = result.get("items") or result.get("data") or []
        return self._build_result(raw_items, as_int(result.get("total_count", result.get("totalCount"))))

    def get_recent_items(self, limit: int = 20, offset: int = 0) -> ApiSearchResult:
        """
        Newest items first.

        Args:
            limit: Items per page (max 100)
            offset: Zero-based position, converted to the API's one-based offset
        """
        api_offset = offset + 1
        if api_offset > MAX_OFFSET:
            logger.info(f"sokmil offset {api_offset} beyond API limit {MAX_OFFSET}")
            return ApiSearchResult()
        return self.search(sort="date", category="av", hits=min(limit, 100), offset=api_offset)
