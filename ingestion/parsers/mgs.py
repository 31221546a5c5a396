"""
MGS (mgstage.com) detail page parser.

- Detail: https://www.mgstage.com/product/product_detail/{id}/
- Listing: cSearch.php sorted by newest, 30 per page
- Age confirmation via the adc=1 cookie (default fetcher cookies)
- Price block: HD download > SD download > streaming; a struck-through
  price in div.price_list marks a time sale
"""

import logging
import re
from typing import List, Optional

from django.conf import settings

from ingestion.exceptions import NotAProduct
from ingestion.parsers.base import (
    BaseParser,
    Cascade,
    absolute_url,
    meta_content,
    performer_candidates,
    text_of,
    th_cell,
    unique,
)
from ingestion.parsers.classifier import PageClassifier
from ingestion.services.pricing import DEFAULT_SALE_TYPE, extract_sale, parse_sale_expiry
from ingestion.services.product_types import IntermediateProduct
from ingestion.utils.normalization import (
    clean_text,
    parse_duration_minutes,
    parse_price,
    parse_release_date,
)

logger = logging.getLogger(__name__)

BASE_URL = "https://www.mgstage.com"
IMAGE_EXTENSION_PATTERN = re.compile(r"\.(jpg|jpeg|png|gif|webp)$", re.IGNORECASE)
SAMPLE_URL_SCRIPT_PATTERN = re.compile(r"sample_url['\":\s]+['\"]([^'\"]+)['\"]")


def _radio_price(soup, button_id: str) -> Optional[int]:
    # value format: download_hd,0,uuid,PRODUCT-ID,1480
    radio = soup.find("input", attrs={"name": "price", "id": button_id})
    if radio is None or not radio.get("value"):
        return None
    parts = radio["value"].split(",")
    if len(parts) >= 5:
        price = parse_price(parts[4])
        if price:
            return price
    return None


def _element_price(soup, element_id: str) -> Optional[int]:
    return parse_price(text_of(soup.find(id=element_id)))


PRICE = Cascade(
    "price",
    [
        ("download_hd_price", lambda soup, html: _element_price(soup, "download_hd_price")),
        ("download_hd_radio", lambda soup, html: _radio_price(soup, "download_hd_btn")),
        ("download_sd_price", lambda soup, html: _element_price(soup, "download_sd_price")),
        ("download_sd_radio", lambda soup, html: _radio_price(soup, "download_sd_btn")),
        ("streaming_price", lambda soup, html: _element_price(soup, "streaming_price")),
        ("price_row", lambda soup, html: parse_price(text_of(th_cell(soup, "価格")))),
    ],
)

TITLE = Cascade(
    "title",
    [
        ("h1_tag", lambda soup, html: text_of(soup.select_one("h1.tag"))),
        ("og_title", lambda soup, html: meta_content(soup, "og:title")),
        ("title_tag", lambda soup, html: text_of(soup.title)),
    ],
)

DESCRIPTION = Cascade(
    "description",
    [
        ("introduction", lambda soup, html: text_of(soup.select_one("#introduction .introduction"))),
        ("introduction_block", lambda soup, html: text_of(soup.select_one("#introduction"))),
        ("meta_description", lambda soup, html: meta_content(soup, "description")),
    ],
)

THUMBNAIL = Cascade(
    "thumbnail",
    [
        ("og_image", lambda soup, html: absolute_url(meta_content(soup, "og:image"), BASE_URL)),
        ("enlarge_image", lambda soup, html: _attr_url(soup, "a#EnlargeImage", "href")),
    ],
)


def _sample_links(soup, selector: str) -> List[str]:
    return unique(absolute_url(a.get("href"), BASE_URL) for a in soup.select(selector))


def _sample_pics(soup) -> List[str]:
    return unique(
        absolute_url(a.get("href"), BASE_URL)
        for a in soup.select('a[href*="pics/"], a[href*="/sample/"]')
        if a.get("href") and IMAGE_EXTENSION_PATTERN.search(a["href"])
    )


def _sample_imgs(soup) -> List[str]:
    selector = ".sample-photo img, .sample-box img, .sample-image img, .product-sample img"
    return unique(absolute_url(img.get("src") or img.get("data-src"), BASE_URL) for img in soup.select(selector))


SAMPLE_IMAGES = Cascade(
    "sample_images",
    [
        ("sample_photo", lambda soup, html: _sample_links(soup, "#sample-photo a")),
        ("sample_image_links", lambda soup, html: _sample_links(soup, "a.sample_image")),
        ("pics_links", lambda soup, html: _sample_pics(soup)),
        ("sample_img_tags", lambda soup, html: _sample_imgs(soup)),
    ],
)


def _attr_url(soup, selector: str, attr: str) -> Optional[str]:
    element = soup.select_one(selector)
    if element is None:
        return None
    return absolute_url(element.get(attr), BASE_URL)


def _script_sample_url(html: str) -> Optional[str]:
    match = SAMPLE_URL_SCRIPT_PATTERN.search(html)
    return absolute_url(match.group(1), BASE_URL) if match else None


SAMPLE_VIDEO = Cascade(
    "sample_video",
    [
        ("video_source", lambda soup, html: _attr_url(soup, "video source", "src")),
        ("data_video_url", lambda soup, html: _attr_url(soup, "[data-video-url]", "data-video-url")),
        ("sample_movie_link", lambda soup, html: _attr_url(soup, 'a[href*="sample_movie"]', "href")),
        ("script_sample_url", lambda soup, html: _script_sample_url(html)),
        ("button_sample", lambda soup, html: _attr_url(soup, 'a.button_sample[href*="sampleplayer"]', "href")),
        ("sample_movie_btn", lambda soup, html: _attr_url(soup, 'p.sample_movie_btn a[href*="sampleplayer"]', "href")),
    ],
)


def _performers_from_links(soup) -> List[str]:
    cell = th_cell(soup, "出演")
    if cell is None:
        return []
    return [text_of(a) for a in cell.find_all("a") if text_of(a)]


def _performers_from_text(soup) -> List[str]:
    cell = th_cell(soup, "出演")
    text = text_of(cell)
    if not text:
        return []
    return [part for part in re.split(r"[\s,、/]+", text) if part]


PERFORMERS = Cascade(
    "performers",
    [
        ("cast_links", lambda soup, html: _performers_from_links(soup)),
        ("cast_text", lambda soup, html: _performers_from_text(soup)),
    ],
)


def _duration_from_text(html: str) -> Optional[int]:
    match = re.search(r"収録時間[：:]\s*(\d+)\s*分", html)
    return int(match.group(1)) if match else None


DURATION = Cascade(
    "duration",
    [
        ("duration_row", lambda soup, html: parse_duration_minutes(text_of(th_cell(soup, "収録時間")))),
        ("duration_text", lambda soup, html: _duration_from_text(html)),
    ],
)


class MgsParser(BaseParser):
    """
    Parser for MGS detail pages.

    Usage:
        parser = MgsParser()
        product = parser.extract("857OMG-018", html, url)
    """

    SOURCE = "mgs"
    BASE_URL = BASE_URL
    DETAIL_URL = "https://www.mgstage.com/product/product_detail/{id}/"
    LIST_URL = "https://www.mgstage.com/search/cSearch.php?search_word=&sort=new&list_cnt=30&page={page}"
    LIST_PAGE_SIZE = 30
    LIST_ID_PATTERNS = [re.compile(r"/product/product_detail/([A-Za-z0-9]+-[A-Za-z0-9]+)/")]

    classifier = PageClassifier(
        detail_markers=["配信開始日", "出演", "価格"],
        title_patterns=[re.compile(r"^MGS動画\s*[＜<]")],
    )

    def affiliate_url(self, local_id: str) -> str:
        code = getattr(settings, "MGS_AFFILIATE_CODE", "")
        url = self.detail_url(local_id)
        return f"{url}?af_id={code}" if code else url

    def iter_id_range(self, start_id: str, end_id: str) -> List[str]:
        """MGS ids are product codes; ranges are only supported within one series prefix."""
        start = re.match(r"^(.*?)(\d+)$", start_id)
        end = re.match(r"^(.*?)(\d+)$", end_id)
        if not start or not end or start.group(1) != end.group(1):
            raise ValueError(f"Cannot build an id range from {start_id} to {end_id}")
        prefix, width = start.group(1), len(start.group(2))
        first, last = int(start.group(2)), int(end.group(2))
        step = -1 if first > last else 1
        return [f"{prefix}{n:0{width}d}" for n in range(first, last + step, step)]

    def extract(self, local_id: str, html: str, url: str) -> IntermediateProduct:
        soup = self.soup(html)

        title = clean_text(TITLE.value(soup, html))
        if not title:
            raise NotAProduct("missing_title")

        price = PRICE.value(soup, html)

        sale_info = None
        price_list = soup.select_one("div.price_list")
        if price_list is not None and price:
            struck = price_list.select_one("del, .price_del, s, strike")
            if struck is not None:
                sale_block = soup.select_one(".sale_end, .campaign_end, .timesale_end, .sale_period")
                # Discount badges are only trusted inside the price block; the
                # expiry may sit anywhere on the page.
                context = " ".join(filter(None, [text_of(sale_block), text_of(price_list)]))
                sale_info = extract_sale(text_of(struck), price, context, sale_type=DEFAULT_SALE_TYPE)
                if sale_info is not None and sale_info.ends_at is None:
                    sale_info.ends_at = parse_sale_expiry(text_of(soup.body))

        genres = []
        genre_cell = th_cell(soup, "ジャンル")
        if genre_cell is not None:
            genres = unique(text_of(a) for a in genre_cell.find_all("a"))

        video = SAMPLE_VIDEO.value(soup, html)

        return IntermediateProduct(
            source_id=self.SOURCE,
            source_local_id=local_id,
            title=title,
            affiliate_url=self.affiliate_url(local_id),
            url=url,
            description=clean_text(DESCRIPTION.value(soup, html)),
            release_date=parse_release_date(text_of(th_cell(soup, "配信開始日"))),
            duration_minutes=DURATION.value(soup, html),
            thumbnail_url=THUMBNAIL.value(soup, html),
            sample_image_urls=SAMPLE_IMAGES.value(soup, html) or [],
            sample_video_urls=[video] if video else [],
            price=price,
            sale_info=sale_info,
            performer_names=performer_candidates(PERFORMERS.value(soup, html) or [], title),
            genre_names=genres,
        )
