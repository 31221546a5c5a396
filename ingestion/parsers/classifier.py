"""
Page classification - is this a genuine product detail page?

Detects the frequent "nothing to ingest here" outcomes of a detail fetch:
1. Redirect to the home/list/search/age-check page (final URL)
2. Known home page literal markers
3. Missing structural elements only present on detail pages
4. Known top-page / placeholder titles
5. Generic site boilerplate in the meta description
6. Age gate text without any product information on the page

validate_product_data() runs the same title/description checks on an
already extracted record (used for API and CSV records too).
"""

import logging
import re
from dataclasses import dataclass
from html import unescape
from typing import Iterable, List, Optional, Pattern
from urllib.parse import urlparse

from ingestion.services.names import is_valid_title

logger = logging.getLogger(__name__)

MIN_TITLE_LENGTH = 5

TOP_PAGE_TITLE_PATTERNS = [
    re.compile(r"^ソクミル-\d+$"),
    re.compile(r"^Japanska-\d+$"),
    re.compile(r"^FC2動画アダルト$"),
    re.compile(r"^MGS動画\(成人認証\)"),
    re.compile(r"^アダルト動画.*ソクミル"),
    re.compile(r"^無修正動画.*カリビアンコム"),
    re.compile(r"^エロ動画・アダルトビデオ\s*-MGS動画"),
    re.compile(r"^MGS動画＜プレステージ\s*グループ＞$"),
]

GENERIC_DESCRIPTION_PATTERNS = [
    re.compile(r"アダルト動画・エロ動画ソクミル"),
    re.compile(r"人気のアダルトビデオを高画質・低価格"),
    re.compile(r"全作品無料のサンプル動画付き"),
    re.compile(r"18歳未満.*閲覧.*禁止"),
    re.compile(r"年齢確認.*18歳以上"),
    re.compile(r"プレステージグループのMGS動画は、10年以上の運営実績"),
    re.compile(r"独占作品をはじめ、人気AV女優、素人、アニメ、VR作品など"),
]

AGE_GATE_PATTERNS = [
    re.compile(r"年齢確認"),
    re.compile(r"18歳以上"),
    re.compile(r"18歳未満"),
    re.compile(r"age[-_]?verification", re.IGNORECASE),
    re.compile(r"confirm.*age", re.IGNORECASE),
]

PRODUCT_INFO_PATTERNS = [
    re.compile(r"[¥￥][\d,]+"),
    re.compile(r"円"),
    re.compile(r"出演"),
]

REDIRECT_PATH_PATTERNS = [
    re.compile(r"^/?$"),
    re.compile(r"/list\.html?$"),
    re.compile(r"/search"),
    re.compile(r"/age[-_]?check", re.IGNORECASE),
    re.compile(r"/confirm", re.IGNORECASE),
]

_TITLE_TAG = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)
_META_DESCRIPTION = re.compile(
    r"<meta[^>]+name=[\"']description[\"'][^>]*content=[\"']([^\"']*)[\"']"
    r"|<meta[^>]+content=[\"']([^\"']*)[\"'][^>]*name=[\"']description[\"']",
    re.IGNORECASE,
)


@dataclass
class ClassificationResult:
    """
    Outcome of page or record classification.

    Attributes:
        is_product: True for a genuine detail page / record
        reason: Short machine-readable reason, logged with NotAProduct
        invalid_title: True when the record was rejected only because
            its title failed validation
    """

    is_product: bool
    reason: str = ""
    invalid_title: bool = False


def extract_title(html: str) -> str:
    match = _TITLE_TAG.search(html or "")
    if not match:
        return ""
    return re.sub(r"\s+", " ", unescape(match.group(1))).strip()


def extract_meta_description(html: str) -> str:
    match = _META_DESCRIPTION.search(html or "")
    if not match:
        return ""
    return unescape(match.group(1) or match.group(2) or "").strip()


def detect_redirect(requested_url: Optional[str], final_url: Optional[str]) -> Optional[str]:
    """
    Detect a redirect away from a detail page.

    Returns:
        "host_changed", "to_top_page" or None
    """
    if not requested_url or not final_url or requested_url == final_url:
        return None
    requested = urlparse(requested_url)
    final = urlparse(final_url)
    if requested.hostname != final.hostname:
        return "host_changed"
    if requested.path == final.path:
        return None
    for pattern in REDIRECT_PATH_PATTERNS:
        if pattern.search(final.path):
            return "to_top_page"
    return None


class PageClassifier:
    """
    Per-source detail page detector.

    Args:
        home_markers: Literal strings that only appear on the home page
        detail_markers: Strings that only appear on detail pages
        min_detail_markers: How many detail markers must be present
        title_patterns: Extra top-page title regexes for the source
        html_patterns: Regexes that identify the source's top page anywhere
            in the HTML
        min_content_length: Bodies shorter than this are not product pages
    """

    def __init__(
        self,
        home_markers: Iterable[str] = (),
        detail_markers: Iterable[str] = (),
        min_detail_markers: int = 1,
        title_patterns: Iterable[Pattern] = (),
        html_patterns: Iterable[Pattern] = (),
        min_content_length: int = 500,
    ):
        self.home_markers: List[str] = list(home_markers)
        self.detail_markers: List[str] = list(detail_markers)
        self.min_detail_markers = min_detail_markers
        self.title_patterns: List[Pattern] = TOP_PAGE_TITLE_PATTERNS + list(title_patterns)
        self.html_patterns: List[Pattern] = list(html_patterns)
        self.min_content_length = min_content_length

    def classify(
        self,
        html: str,
        requested_url: Optional[str] = None,
        final_url: Optional[str] = None,
    ) -> ClassificationResult:
        """
        Classify a fetched page.

        Args:
            html: Page body
            requested_url: URL that was requested
            final_url: URL after redirects

        Returns:
            ClassificationResult with is_product and the first matching reason
        """
        if not html or len(html) < self.min_content_length:
            return ClassificationResult(False, "empty_or_short")

        redirect = detect_redirect(requested_url, final_url)
        if redirect:
            return ClassificationResult(False, f"redirect:{redirect}")

        for marker in self.home_markers:
            if marker in html:
                return ClassificationResult(False, f"home_marker:{marker}")

        for pattern in self.html_patterns:
            if pattern.search(html):
                return ClassificationResult(False, f"top_page:{pattern.pattern}")

        title = extract_title(html)
        for pattern in self.title_patterns:
            if title and pattern.search(title):
                return ClassificationResult(False, "top_page_title")

        description = extract_meta_description(html)
        for pattern in GENERIC_DESCRIPTION_PATTERNS:
            if description and pattern.search(description):
                return ClassificationResult(False, "generic_description")

        if self.detail_markers:
            found = sum(1 for marker in self.detail_markers if marker in html)
            if found < self.min_detail_markers:
                return ClassificationResult(False, "missing_detail_markers")

        # Detail pages often carry age-check text in the footer, so it only
        # counts when the page has no price or cast information at all
        if any(p.search(html) for p in AGE_GATE_PATTERNS):
            if not any(p.search(html) for p in PRODUCT_INFO_PATTERNS):
                return ClassificationResult(False, "age_gate")

        return ClassificationResult(True, "detail_page")


def validate_product_data(
    title: Optional[str],
    description: Optional[str],
    source: str,
    source_local_id: str,
) -> ClassificationResult:
    """
    Reject records carrying top-page or placeholder data.

    Returns:
        ClassificationResult; invalid_title is set when the title itself
        failed validation (the whole record is then rejected)
    """
    if not title or not title.strip():
        return ClassificationResult(False, "empty_title", invalid_title=True)

    title = title.strip()
    placeholder = re.compile(rf"^{re.escape(source)}-{re.escape(source_local_id)}$", re.IGNORECASE)
    if placeholder.match(title):
        return ClassificationResult(False, "placeholder_title")

    for pattern in TOP_PAGE_TITLE_PATTERNS:
        if pattern.search(title):
            return ClassificationResult(False, "top_page_title")

    if description:
        for pattern in GENERIC_DESCRIPTION_PATTERNS:
            if pattern.search(description):
                return ClassificationResult(False, "generic_description")

    if len(title) < MIN_TITLE_LENGTH or not is_valid_title(title):
        return ClassificationResult(False, "invalid_title", invalid_title=True)

    return ClassificationResult(True, "valid")
