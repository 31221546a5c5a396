"""
DTI site family parser (caribbeancom, caribbeancompr, heyzo, 10musume,
pacopacomama).

All sites share one page layout:
- Detail: {base}/moviepages/{id}/index.html
- Listing: {base}/listpages/all{page}.htm(l) with moviepages links
- Schema.org itemprop uploadDate / duration
- Large jacket image under images/l_ or images/l/

Several sites still serve EUC-JP, so the encoding is fixed per site instead
of trusting the response charset. Ids are either MMDDYY_NNN (daily counter)
or a plain four digit number (heyzo).
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, Iterator, List, Optional, Type
from urllib.parse import quote

from django.conf import settings

from ingestion.exceptions import NotAProduct
from ingestion.parsers.base import (
    BaseParser,
    Cascade,
    absolute_url,
    meta_content,
    performer_candidates,
    text_of,
    unique,
)
from ingestion.parsers.classifier import PageClassifier
from ingestion.services.product_types import IntermediateProduct
from ingestion.utils.normalization import clean_text, parse_duration_minutes, parse_release_date

logger = logging.getLogger(__name__)

DATE_COUNTER_ID = re.compile(r"^(\d{2})(\d{2})(\d{2})_(\d{3})$")
MAX_RANGE_IDS = 10000


@dataclass(frozen=True)
class DtiSite:
    slug: str
    name: str
    base_url: str
    list_path: str
    encoding: Optional[str]
    id_format: str = "MMDDYY_NNN"


DTI_SITES: Dict[str, DtiSite] = {
    "caribbeancom": DtiSite(
        "caribbeancom", "カリビアンコム", "https://www.caribbeancom.com", "/listpages/all{page}.htm", "euc-jp"
    ),
    "caribbeancompr": DtiSite(
        "caribbeancompr", "カリビアンコムプレミアム", "https://www.caribbeancompr.com",
        "/listpages/all{page}.html", "euc-jp",
    ),
    "heyzo": DtiSite(
        "heyzo", "HEYZO", "https://www.heyzo.com", "/listpages/all_{page}.html", None, id_format="NNNN"
    ),
    "10musume": DtiSite(
        "10musume", "天然むすめ", "https://www.10musume.com", "/listpages/all{page}.html", "euc-jp"
    ),
    "pacopacomama": DtiSite(
        "pacopacomama", "パコパコママ", "https://www.pacopacomama.com", "/listpages/all{page}.html", "euc-jp"
    ),
}


def next_date_counter_id(current: str, reverse: bool = True) -> Optional[str]:
    """
    Step an MMDDYY_NNN id by one.

    Counters run 001-999 per day; stepping past either end moves to the
    adjacent day.
    """
    match = DATE_COUNTER_ID.match(current)
    if not match:
        return None
    month, day, year, number = (int(g) for g in match.groups())
    try:
        current_date = date(2000 + year, month, day)
    except ValueError:
        return None

    number += -1 if reverse else 1
    if number < 1:
        number = 999
        current_date -= timedelta(days=1)
    elif number > 999:
        number = 1
        current_date += timedelta(days=1)
    return f"{current_date:%m%d%y}_{number:03d}"


def _title_without_site(soup) -> Optional[str]:
    title = text_of(soup.title)
    if not title:
        return None
    return re.sub(r"\s*[|｜].*$", "", title).strip() or None


def _heading(soup) -> Optional[str]:
    return text_of(soup.select_one('h1[itemprop="name"]')) or text_of(soup.select_one("div.heading h1"))


TITLE = Cascade(
    "title",
    [
        ("itemprop_name", lambda soup, html: _heading(soup)),
        ("title_tag", lambda soup, html: _title_without_site(soup)),
        ("og_title", lambda soup, html: meta_content(soup, "og:title")),
    ],
)

DESCRIPTION = Cascade(
    "description",
    [
        ("itemprop_description", lambda soup, html: text_of(soup.select_one('[itemprop="description"]'))),
        ("meta_description", lambda soup, html: meta_content(soup, "description")),
    ],
)


def _itemprop_value(soup, *props: str) -> Optional[str]:
    for prop in props:
        element = soup.find(attrs={"itemprop": prop})
        if element is not None:
            return element.get("content") or text_of(element)
    return None


def _dti_duration(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    # "01:02:03" or "T01H02M03S" are handled by the shared parser; "30:35" is mm:ss
    mm_ss = re.fullmatch(r"\s*(\d+):(\d{2})\s*", value)
    if mm_ss:
        return int(mm_ss.group(1)) or None
    return parse_duration_minutes(value.strip())


class DtiParser(BaseParser):
    """
    Shared parser for the DTI sites; subclasses only set SITE.

    Usage:
        parser = get_parser("caribbeancom")
        product = parser.extract("010124_001", html, url)
    """

    SITE: DtiSite
    LIST_ID_PATTERNS = [re.compile(r"moviepages/([0-9_-]+)/index\.html")]

    classifier = PageClassifier(
        detail_markers=['itemprop="uploadDate"', 'itemprop="datePublished"', 'itemprop="duration"'],
    )

    def affiliate_url(self, local_id: str) -> str:
        affiliate_id = getattr(settings, "DTI_AFFILIATE_ID", "")
        url = self.detail_url(local_id)
        if not affiliate_id:
            return url
        return f"https://click.dtiserv2.com/Direct/{affiliate_id}/{quote(url, safe='')}"

    def iter_id_range(self, start_id: str, end_id: str) -> Iterator[str]:
        if self.SITE.id_format == "NNNN":
            start, end = int(start_id), int(end_id)
            step = -1 if start > end else 1
            for number in range(start, end + step, step):
                yield f"{number:04d}"
            return

        if not DATE_COUNTER_ID.match(start_id) or not DATE_COUNTER_ID.match(end_id):
            raise ValueError(f"{self.SOURCE} ids look like MMDDYY_NNN, got {start_id}..{end_id}")

        def sort_key(local_id):
            month, day, year, number = DATE_COUNTER_ID.match(local_id).groups()
            return (year, month, day, number)

        reverse = sort_key(start_id) > sort_key(end_id)
        current = start_id
        for _ in range(MAX_RANGE_IDS):
            yield current
            if current == end_id:
                return
            current = next_date_counter_id(current, reverse=reverse)
            if current is None:
                return
        logger.warning(f"{self.SOURCE} id range {start_id}..{end_id} truncated at {MAX_RANGE_IDS} ids")

    def _thumbnail(self, soup) -> Optional[str]:
        img = soup.select_one('img[src*="images/l_"], img[src*="/images/l/"]')
        if img is not None:
            return absolute_url(img.get("src"), self.BASE_URL)
        return absolute_url(meta_content(soup, "og:image"), self.BASE_URL)

    def _sample_images(self, soup) -> List[str]:
        urls = []
        for img in soup.select('img[itemprop="thumbnail"], img.gallery-image'):
            src = absolute_url(img.get("src"), self.BASE_URL)
            if src:
                urls.append(src.replace("/images/s/", "/images/l/"))
        return unique(urls)

    def _sample_video(self, soup) -> List[str]:
        source = soup.select_one("video source[src], video[src]")
        if source is not None:
            url = absolute_url(source.get("src"), self.BASE_URL)
            return [url] if url else []
        return []

    def _genres(self, soup) -> List[str]:
        genres = []
        for link in soup.select('a[href*="/listpages/"]'):
            text = text_of(link)
            if text and "すべて" not in text and not re.fullmatch(r"[\d\s<>«»次前へ]+", text):
                genres.append(text)
        return unique(genres)

    def extract(self, local_id: str, html: str, url: str) -> IntermediateProduct:
        soup = self.soup(html)

        title = clean_text(TITLE.value(soup, html))
        if not title:
            raise NotAProduct("missing_title")

        performers = [text_of(a) for a in soup.select('a[href*="/actress/"], [itemprop="actor"] a')]

        return IntermediateProduct(
            source_id=self.SOURCE,
            source_local_id=local_id,
            title=title,
            affiliate_url=self.affiliate_url(local_id),
            url=url,
            description=clean_text(DESCRIPTION.value(soup, html)),
            release_date=parse_release_date(_itemprop_value(soup, "uploadDate", "datePublished")),
            duration_minutes=_dti_duration(_itemprop_value(soup, "duration")),
            thumbnail_url=self._thumbnail(soup),
            sample_image_urls=self._sample_images(soup),
            sample_video_urls=self._sample_video(soup),
            performer_names=performer_candidates(filter(None, performers), title),
            genre_names=self._genres(soup),
        )


def _make_site_parser(site: DtiSite) -> Type[DtiParser]:
    attrs = {
        "SITE": site,
        "SOURCE": site.slug,
        "BASE_URL": site.base_url,
        "DETAIL_URL": f"{site.base_url}/moviepages/{{id}}/index.html",
        "LIST_URL": f"{site.base_url}{site.list_path}",
        "ENCODING": site.encoding,
    }
    return type(f"Dti{site.slug.capitalize()}Parser", (DtiParser,), attrs)


DTI_PARSERS: Dict[str, Type[DtiParser]] = {slug: _make_site_parser(site) for slug, site in DTI_SITES.items()}
