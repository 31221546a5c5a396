"""
b10f affiliate CSV feed.

The whole catalog is published as one CSV download:
https://b10f.jp/csv_home.php?all=1&atype={affiliate_id}&nosep=1

Columns (by position):
 0 productId   1 releaseDate  2 title     3 captureCount  4 imageType
 5 imageUrl    6 productUrl   7 description  8 price      9 duration
10 brand      11 category    12 performers (may spill into later columns)
"""

import csv
import io
import logging
import re
from typing import Iterator, List, Optional

import requests
from django.conf import settings

from ingestion.clients.field_mapping import FieldRule, normalize_record, to_intermediate
from ingestion.exceptions import ConfigurationError, TransportError
from ingestion.services.product_types import IntermediateProduct

logger = logging.getLogger(__name__)

MIN_COLUMNS = 13
MAX_CAPTURES = 30
ALL_WORKS_CATEGORY = "全ての作品"

_SMALL_IMAGE_PATTERN = re.compile(r"/(\d+)s\.jpg$")


def small_to_large_image(url: str) -> str:
    """Rewrite ".../1s.jpg" (small) to ".../1.jpg" (full size)."""
    return _SMALL_IMAGE_PATTERN.sub(r"/\1.jpg", url)


B10F_FIELD_MAPPING = {
    "source_local_id": FieldRule(("0",), "id"),
    "release_date": FieldRule(("1",), "date"),
    "title": FieldRule(("2",)),
    "thumbnail_url": FieldRule(("5",), "url", transform=small_to_large_image),
    "url": FieldRule(("6",), "url"),
    "description": FieldRule(("7",)),
    "price": FieldRule(("8",), "price"),
    "duration_minutes": FieldRule(("9",), "minutes"),
    "genre_names": FieldRule(("11",), "name_list"),
}


class B10fFeed:
    """
    Download and normalize the b10f catalog CSV.

    Usage:
        feed = B10fFeed()
        for product in feed.fetch_rows(limit=500):
            ...
    """

    SOURCE = "b10f"
    CSV_URL = "https://b10f.jp/csv_home.php"
    PRODUCT_URL = "https://b10f.jp/p/{product_id}.html"

    def __init__(
        self,
        affiliate_id: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Raises:
            ConfigurationError: If B10F_AFFILIATE_ID is not configured
        """
        self.affiliate_id = affiliate_id or getattr(settings, "B10F_AFFILIATE_ID", None)
        if not self.affiliate_id:
            raise ConfigurationError("B10F_AFFILIATE_ID not configured")
        self.timeout = timeout or getattr(settings, "INGEST_REQUEST_TIMEOUT", 30)
        self.session = session or requests.Session()

    def download(self) -> str:
        """
        Download the CSV as text.

        Raises:
            TransportError: On network failure or non-2xx response
        """
        params = {"all": 1, "atype": self.affiliate_id, "nosep": 1}
        try:
            response = self.session.get(self.CSV_URL, params=params, timeout=self.timeout)
            response.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise TransportError(f"b10f CSV HTTP {status}", status_code=status, url=self.CSV_URL) from e
        except requests.RequestException as e:
            raise TransportError(f"b10f CSV download failed: {e}", url=self.CSV_URL) from e

        if "charset" not in response.headers.get("Content-Type", "").lower():
            response.encoding = response.apparent_encoding
        return response.text

    def iter_rows(self, text: str) -> Iterator[List[str]]:
        """Yield data rows, skipping the header and short rows."""
        reader = csv.reader(io.StringIO(text))
        next(reader, None)
        for row in reader:
            if len(row) < MIN_COLUMNS:
                if any(cell.strip() for cell in row):
                    logger.debug(f"b10f row skipped, {len(row)} columns")
                continue
            yield row

    def normalize_row(self, row: List[str]) -> IntermediateProduct:
        """Map one CSV row to an IntermediateProduct."""
        fields = normalize_record(row, B10F_FIELD_MAPPING)
        product = to_intermediate(self.SOURCE, fields, raw=row)

        product_id = product.source_local_id
        if product_id:
            product.affiliate_url = (
                f"{self.PRODUCT_URL.format(product_id=product_id)}"
                f"?atv={self.affiliate_id}_U{product_id}TTXT_12_9"
            )

        product.genre_names = [g for g in product.genre_names if g != ALL_WORKS_CATEGORY]

        # Performers may contain unquoted commas and spill into later columns
        performers = ",".join(cell for cell in row[12:] if cell.strip())
        product.performer_names = [n.strip() for n in re.split(r"[,、]", performers) if n.strip()]

        image_url = row[5].strip()
        if image_url:
            base_url = _SMALL_IMAGE_PATTERN.sub("", image_url)
            if base_url != image_url:
                try:
                    captures = min(int(row[3] or 0), MAX_CAPTURES)
                except ValueError:
                    captures = 0
                product.sample_image_urls = [f"{base_url}/c{i}.jpg" for i in range(1, captures + 1)]
                product.sample_video_urls = [f"{base_url}/s.mp4"]

        return product

    def fetch_rows(self, limit: Optional[int] = None, offset: int = 0) -> List[IntermediateProduct]:
        """
        Download the feed and normalize a slice of it.

        Args:
            limit: Max rows to return (None for all)
            offset: Rows to skip after the header
        """
        products = []
        for index, row in enumerate(self.iter_rows(self.download())):
            if index < offset:
                continue
            if limit is not None and len(products) >= limit:
                break
            products.append(self.normalize_row(row))
        return products

    def count_rows(self) -> int:
        """Line count minus header."""
        lines = [line for line in self.download().splitlines() if line.strip()]
        return max(0, len(lines) - 1)
