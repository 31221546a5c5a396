"""
Japanska (japanska-xxx.com) detail page parser.

- Detail: https://www.japanska-xxx.com/movie/detail_{id}.html
- Listing: category/list_0.html (newest first), ?page=N for later pages
- Requires session continuity: the list page is fetched first to obtain the
  session cookie, and every request carries the previous URL as Referer.
  Without it the site answers detail URLs with the home page.
- Home page marker: <!--home.html-->. The "幅広いジャンル" / "30日" header
  text appears on every page, so it only identifies the home page when no
  detail element is present (handled by the detail markers).
"""

import logging
import re
from typing import List, Optional

from django.conf import settings

from ingestion.exceptions import NotAProduct
from ingestion.parsers.base import BaseParser, Cascade, meta_content, performer_candidates, text_of, unique
from ingestion.parsers.classifier import PageClassifier
from ingestion.services.product_types import IntermediateProduct
from ingestion.utils.normalization import clean_text

logger = logging.getLogger(__name__)

IMAGE_HOST = "https://img01.japanska-xxx.com"
SITE_URL = "https://www.japanska-xxx.com"
DEFAULT_AFFILIATE_ID = "9512-1-001"

MOVIE_TTL_PATTERN = re.compile(r"<div[^>]*class=\"movie_ttl\"[^>]*>\s*<p>([^<]+)</p>", re.IGNORECASE)
OG_TITLE_PATTERN = re.compile(r"<meta[^>]*property=\"og:title\"[^>]*content=\"([^\"]+)\"", re.IGNORECASE)
TITLE_TAG_PATTERN = re.compile(r"<title>([^<]+)</title>", re.IGNORECASE)
SITE_NAME_MARKER = "JAPANSKA"
MAX_TITLE_LENGTH = 100

GALLERY_IMAGE_PATTERN = re.compile(
    r"https?://img\d*\.japanska-xxx\.com/img/movie/[^\"'\s<>]+/(?:\d+|big\d+)\.jpg", re.IGNORECASE
)
MOVIE_FOLDER_PATTERN = re.compile(r"https?://img\d*\.japanska-xxx\.com/_movie_/[^\"'\s<>]+\.mp4", re.IGNORECASE)
INTERNAL_MOVIE_ID_PATTERN = re.compile(r"img/movie/([^/\"']+)/")
MP4_FILENAME_PATTERN = re.compile(r"([a-z]\d+_\d+\.mp4)", re.IGNORECASE)
SOURCE_TAG_PATTERN = re.compile(r"<source[^>]*src=\"([^\"]+\.mp4)\"", re.IGNORECASE)
DURATION_PATTERN = re.compile(r"(\d+)分(?:(\d+)秒)?")


def _first_group(pattern, html: str) -> Optional[str]:
    match = pattern.search(html)
    return match.group(1).strip() if match else None


def _og_title(html: str) -> Optional[str]:
    title = _first_group(OG_TITLE_PATTERN, html)
    if title and SITE_NAME_MARKER not in title:
        return title
    return None


def _title_tag(html: str) -> Optional[str]:
    title = _first_group(TITLE_TAG_PATTERN, html)
    if not title:
        return None
    parts = re.split(r"[|｜]", title)
    if len(parts) > 1 and SITE_NAME_MARKER not in parts[0]:
        return parts[0].strip()
    return None


TITLE = Cascade(
    "title",
    [
        ("movie_ttl", lambda soup, html: _first_group(MOVIE_TTL_PATTERN, html)),
        ("og_title", lambda soup, html: _og_title(html)),
        ("title_tag", lambda soup, html: _title_tag(html)),
    ],
)

DESCRIPTION = Cascade(
    "description",
    [
        ("comment_block", lambda soup, html: text_of(soup.select_one("div[class*=comment]"))),
        ("description_paragraph", lambda soup, html: text_of(soup.select_one("p[class*=description]"))),
        ("meta_description", lambda soup, html: meta_content(soup, "description")),
    ],
)


def _act_name(soup) -> List[str]:
    link = soup.select_one("p.act_name a")
    return [text_of(link)] if text_of(link) else []


def _jooyuu_name(soup) -> List[str]:
    for dt in soup.find_all("dt"):
        if "女優名" in dt.get_text():
            dd = dt.find_next_sibling("dd")
            link = dd.find("a") if dd else None
            if text_of(link):
                return [text_of(link)]
    return []


def _actress_links(soup) -> List[str]:
    return unique(text_of(a) for a in soup.select('a[href*="actress"]'))


def _actor_label(html: str) -> List[str]:
    match = re.search(r"出演[者：:]\s*([^<\n]+)", html)
    if not match:
        return []
    return [n.strip() for n in re.split(r"[,、/]", match.group(1)) if n.strip()][:10]


PERFORMERS = Cascade(
    "performers",
    [
        ("act_name", lambda soup, html: _act_name(soup)),
        ("jooyuu_name", lambda soup, html: _jooyuu_name(soup)),
        ("actress_links", lambda soup, html: _actress_links(soup)),
        ("actor_label", lambda soup, html: _actor_label(html)),
    ],
)


def _thumb_99(html: str) -> Optional[str]:
    match = re.search(r"img/movie/[^\"'\s<>]+/99\.jpg", html, re.IGNORECASE)
    return f"{SITE_URL}/{match.group(0)}" if match else None


def _thumb_00(html: str) -> Optional[str]:
    match = re.search(r"https?://[^\"'\s<>]*img\d*\.japanska-xxx\.com/img/movie/[^\"'\s<>]+/00\.jpg", html, re.IGNORECASE)
    return match.group(0) if match else None


def _img_movie_src(html: str) -> Optional[str]:
    return _first_group(re.compile(r"<img[^>]*src=\"(https?://[^\"]*movie[^\"]*\.jpg)\"", re.IGNORECASE), html)


THUMBNAIL = Cascade(
    "thumbnail",
    [
        ("og_image", lambda soup, html: meta_content(soup, "og:image")),
        ("img_movie_src", lambda soup, html: _img_movie_src(html)),
        ("thumb_99", lambda soup, html: _thumb_99(html)),
        ("thumb_00", lambda soup, html: _thumb_00(html)),
    ],
)


def _trailing_number(url: str, pattern: str) -> int:
    match = re.search(pattern, url, re.IGNORECASE)
    return int(match.group(1)) if match else 0


def _gallery_images(html: str) -> List[str]:
    images = unique(GALLERY_IMAGE_PATTERN.findall(html))
    return sorted(images, key=lambda url: _trailing_number(url, r"(\d+)\.jpg$"))


def _movie_folder_videos(html: str) -> List[str]:
    return unique(MOVIE_FOLDER_PATTERN.findall(html))


def _mp4_filename_videos(html: str) -> List[str]:
    # Pages sometimes only list file names, e.g. "[33] => k5868_00.mp4"
    internal_id = _first_group(INTERNAL_MOVIE_ID_PATTERN, html)
    if not internal_id:
        return []
    return unique(f"{IMAGE_HOST}/_movie_/{internal_id}/{name}" for name in MP4_FILENAME_PATTERN.findall(html))


def _source_tag_video(html: str) -> List[str]:
    src = _first_group(SOURCE_TAG_PATTERN, html)
    if not src:
        return []
    return [src if src.startswith("http") else f"{IMAGE_HOST}/{src.lstrip('/')}"]


SAMPLE_VIDEOS = Cascade(
    "sample_videos",
    [
        ("movie_folder", lambda soup, html: _movie_folder_videos(html)),
        ("mp4_filenames", lambda soup, html: _mp4_filename_videos(html)),
        ("source_tag", lambda soup, html: _source_tag_video(html)),
    ],
)


def parse_duration(html: str) -> Optional[int]:
    """"85分30秒" -> 86 (seconds rounded to the nearest minute, halves up)."""
    match = DURATION_PATTERN.search(html)
    if not match:
        return None
    minutes = int(match.group(1))
    if match.group(2):
        minutes += int(int(match.group(2)) / 60 + 0.5)
    return minutes or None


class JapanskaParser(BaseParser):
    """Parser for Japanska detail pages (session cookie plus Referer chain)."""

    SOURCE = "japanska"
    BASE_URL = SITE_URL
    DETAIL_URL = "https://www.japanska-xxx.com/movie/detail_{id}.html"
    LIST_URL = "https://www.japanska-xxx.com/category/list_0.html?page={page}"
    LIST_ID_PATTERNS = [re.compile(r"/movie/detail_(\d+)\.html")]
    SESSION_WARMUP_URL = "https://www.japanska-xxx.com/category/list_0.html"

    classifier = PageClassifier(
        home_markers=["<!--home.html-->"],
        detail_markers=['class="movie_ttl"', "/actress/detail_", 'class="act_name"', "女優名"],
    )

    def list_url(self, page: int) -> str:
        if page <= 1:
            return self.SESSION_WARMUP_URL
        return self.LIST_URL.format(page=page)

    def affiliate_url(self, local_id: str) -> str:
        affiliate_id = getattr(settings, "JAPANSKA_AFFILIATE_ID", DEFAULT_AFFILIATE_ID)
        return f"https://wlink.golden-gateway.com/id/{affiliate_id}-{local_id}/"

    def extract(self, local_id: str, html: str, url: str) -> IntermediateProduct:
        soup = self.soup(html)

        title = clean_text(TITLE.value(soup, html))
        if not title or len(title) > MAX_TITLE_LENGTH or "幅広いジャンル" in title or "30日" in title:
            raise NotAProduct("missing_title")

        description = clean_text(DESCRIPTION.value(soup, html))
        if description:
            description = description[:1000]

        gallery = _gallery_images(html)

        return IntermediateProduct(
            source_id=self.SOURCE,
            source_local_id=local_id,
            title=title,
            affiliate_url=self.affiliate_url(local_id),
            url=url,
            description=description,
            duration_minutes=parse_duration(html),
            thumbnail_url=THUMBNAIL.value(soup, html) or (gallery[0] if gallery else None),
            sample_image_urls=gallery,
            sample_video_urls=sorted(
                SAMPLE_VIDEOS.value(soup, html) or [],
                key=lambda u: _trailing_number(u, r"_(\d+)\.mp4$"),
            ),
            performer_names=performer_candidates(PERFORMERS.value(soup, html) or [], title),
        )
