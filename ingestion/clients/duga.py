"""
DUGA affiliate web service client.

- Endpoint: http://affapi.duga.jp/search (API version 1.2, JSON)
- Quota: 60 requests / 60 seconds per application id
- Response: {"hits": "20", "count": 185871, "items": [{"item": {...}}]}
  where counts and offsets may arrive as strings
"""

import logging
from typing import Optional

from django.conf import settings

from ingestion.clients.base import ApiSearchResult, BaseApiClient, as_int
from ingestion.clients.field_mapping import FieldRule
from ingestion.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def scap_to_sample(url: str) -> str:
    """Rewrite a DUGA thumbnail capture URL to its full-size sample."""
    return url.replace("/scap/", "/sample/")


DUGA_FIELD_MAPPING = {
    "source_local_id": FieldRule(("productid", "product_id"), "id"),
    "title": FieldRule(("title",)),
    "description": FieldRule(("caption", "description")),
    "affiliate_url": FieldRule(("affiliateurl", "affiliate_url"), "url"),
    "url": FieldRule(("url",), "url"),
    "release_date": FieldRule(("releasedate", "release_date", "opendate", "open_date"), "date"),
    "duration_minutes": FieldRule(("volume",), "minutes"),
    "thumbnail_url": FieldRule(
        (
            "jacketimage[].large",
            "jacketimage[].midium",
            "jacketimage[].small",
            "posterimage[].large",
            "posterimage[].midium",
            "posterimage[].small",
        ),
        "url",
    ),
    "sample_image_urls": FieldRule(
        ("thumbnail[].large", "thumbnail[].midium", "thumbnail[].image"),
        "url_list",
        transform=scap_to_sample,
    ),
    "sample_video_urls": FieldRule(
        (
            "samplemovie[].midium.movie",
            "samplemovie[].large.movie",
            "samplemovie[].small.movie",
        ),
        "url_list",
    ),
    "price": FieldRule(("saletype[].data.price",), "price"),
    "list_price": FieldRule(("saletype[].data.listprice",), "price"),
    "sale_price": FieldRule(("saletype[].data.saleprice",), "price"),
    "discount_percent": FieldRule(("saletype[].data.discountrate",), "int"),
    "performer_names": FieldRule(("performer[].data.name",), "name_list"),
    "genre_names": FieldRule(("category[].data.name",), "name_list"),
}


class DugaClient(BaseApiClient):
    """
    Client for the DUGA search API.

    Usage:
        client = DugaClient()
        result = client.get_recent_items(limit=50, offset=0)
        for product in result.items:
            ...
    """

    SOURCE = "duga"
    BASE_URL = "http://affapi.duga.jp/search"
    API_VERSION = "1.2"
    FIELD_MAPPING = DUGA_FIELD_MAPPING
    USER_AGENT = "DUGA-API-Client/1.0"

    def __init__(
        self,
        app_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        banner_id: Optional[str] = None,
        **kwargs,
    ):
        """
        Initialize DUGA client.

        Args:
            app_id: Application id (default settings.DUGA_APP_ID)
            agent_id: Agent id (default settings.DUGA_AGENT_ID)
            banner_id: Banner id 01-99 (default settings.DUGA_BANNER_ID or "01")

        Raises:
            ConfigurationError: If app or agent id is missing
        """
        super().__init__(**kwargs)
        self.app_id = app_id or getattr(settings, "DUGA_APP_ID", None)
        self.agent_id = agent_id or getattr(settings, "DUGA_AGENT_ID", None)
        self.banner_id = banner_id or getattr(settings, "DUGA_BANNER_ID", "01") or "01"

        if not self.app_id or not self.agent_id:
            raise ConfigurationError("DUGA_APP_ID and DUGA_AGENT_ID not configured")

    def search(self, **params) -> ApiSearchResult:
        """
        Search DUGA products.

        Args:
            **params: keyword, hits, offset, sort, category, performerid,
                releasestt/releaseend, ...

        Returns:
            ApiSearchResult with normalized items and the total count

        Raises:
            RateLimitExceeded: If the client-side window is full
            TransportError: On network or API errors
        """
        request_params = {
            "version": self.API_VERSION,
            "appid": self.app_id,
            "agentid": self.agent_id,
            "bannerid": self.banner_id,
            "format": "json",
            "adult": 1,
        }
        request_params.update({k: v for k, v in params.items() if v is not None})

        data = self._make_request(request_params)

        raw_items = [entry.get("item", entry) for entry in data.get("items") or data.get("products") or []]
        return self._build_result(raw_items, as_int(data.get("count")))

    def get_recent_items(self, limit: int = 20, offset: int = 0) -> ApiSearchResult:
        """Newest releases first."""
        params = {"sort": "new", "hits": limit}
        if offset:
            params["offset"] = offset
        return self.search(**params)
