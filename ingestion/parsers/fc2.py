"""
FC2 content market (adult.contents.fc2.com) parser.

- Detail: https://adult.contents.fc2.com/article/{id}/
- Listing: the market top page, ?page=N
- The seller name stands in for the performer
- Sale: struck-through price (del/s/strike) next to the current price,
  optionally with an "N% OFF" badge
"""

import logging
import re
from typing import List

from django.conf import settings

from ingestion.exceptions import NotAProduct
from ingestion.parsers.base import BaseParser, Cascade, meta_content, performer_candidates, text_of, unique
from ingestion.parsers.classifier import PageClassifier
from ingestion.services.pricing import extract_sale
from ingestion.services.product_types import IntermediateProduct
from ingestion.utils.normalization import clean_text, parse_price

logger = logging.getLogger(__name__)

CURRENT_PRICE_PATTERN = re.compile(r"([\d,]+)\s*(?:円|pt|ポイント)")
REGULAR_PRICE_LABEL_PATTERN = re.compile(r"(?:定価|通常|元)[価値:：]?\s*([\d,]+)")
DURATION_PATTERN = re.compile(r"(\d+)\s*分")
MAX_SELLER_NAME_LENGTH = 30

TITLE = Cascade(
    "title",
    [
        ("og_title", lambda soup, html: meta_content(soup, "og:title")),
        ("heading", lambda soup, html: text_of(soup.select_one("h1, h2.title"))),
    ],
)

DESCRIPTION = Cascade(
    "description",
    [
        ("meta_description", lambda soup, html: meta_content(soup, "description")),
        ("description_block", lambda soup, html: text_of(soup.select_one(".description"))),
    ],
)


def _sellers(soup) -> List[str]:
    names = []
    for element in soup.select('a[href*="seller"], .seller_name, .author'):
        name = text_of(element)
        if name and 1 < len(name) < MAX_SELLER_NAME_LENGTH:
            names.append(name)
    return unique(names)


def _sample_images(soup) -> List[str]:
    urls = []
    for link in soup.select("ul.items_article_SampleImagesArea a, .items_article_SampleImages a"):
        href = link.get("href")
        if href:
            urls.append(f"https:{href}" if href.startswith("//") else href)
    return unique(urls)


def _sample_video(soup) -> List[str]:
    video = soup.select_one("video source[src], video[src]")
    if video is None:
        return []
    src = video.get("src")
    return [f"https:{src}" if src.startswith("//") else src]


class Fc2Parser(BaseParser):
    """Parser for FC2 content market article pages."""

    SOURCE = "fc2"
    BASE_URL = "https://adult.contents.fc2.com"
    DETAIL_URL = "https://adult.contents.fc2.com/article/{id}/"
    LIST_URL = "https://adult.contents.fc2.com/?page={page}"
    LIST_ID_PATTERNS = [re.compile(r"/article/(\d+)")]

    classifier = PageClassifier(
        detail_markers=["og:title", "/article/"],
        min_detail_markers=2,
    )

    def list_url(self, page: int) -> str:
        if page <= 1:
            return f"{self.BASE_URL}/"
        return self.LIST_URL.format(page=page)

    def affiliate_url(self, local_id: str) -> str:
        uid = getattr(settings, "FC2_AFFILIATE_UID", "")
        if not uid:
            return self.detail_url(local_id)
        return f"https://adult.contents.fc2.com/aff.php?aid={local_id}&affuid={uid}"

    def _prices(self, soup):
        body_text = text_of(soup.body) or ""
        struck = soup.select_one("del, s, strike, .original_price, .regular_price")
        regular_text = text_of(struck)

        # The struck price is part of the body text; search after removing it
        current_text = body_text.replace(regular_text, " ", 1) if regular_text else body_text
        match = CURRENT_PRICE_PATTERN.search(current_text)
        current = parse_price(match.group(1)) if match else None

        if not regular_text:
            label = REGULAR_PRICE_LABEL_PATTERN.search(body_text)
            regular_text = label.group(1) if label else None
        return regular_text, current, body_text

    def extract(self, local_id: str, html: str, url: str) -> IntermediateProduct:
        soup = self.soup(html)

        title = clean_text(TITLE.value(soup, html))
        if not title:
            raise NotAProduct("missing_title")

        regular_text, price, body_text = self._prices(soup)
        sale_info = extract_sale(regular_text, price, body_text) if regular_text and price else None

        duration = DURATION_PATTERN.search(body_text)

        return IntermediateProduct(
            source_id=self.SOURCE,
            source_local_id=local_id,
            title=title,
            affiliate_url=self.affiliate_url(local_id),
            url=url,
            description=clean_text(DESCRIPTION.value(soup, html)),
            duration_minutes=int(duration.group(1)) if duration and int(duration.group(1)) > 0 else None,
            thumbnail_url=meta_content(soup, "og:image"),
            sample_image_urls=_sample_images(soup),
            sample_video_urls=_sample_video(soup),
            price=price,
            sale_info=sale_info,
            performer_names=performer_candidates(_sellers(soup), title),
        )
