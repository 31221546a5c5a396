"""
Person-name validation and normalization.

Pure functions, no I/O. Every client and parser passes raw performer
strings through here before they reach IntermediateProduct or Performer.

Provides:
- is_valid: reject placeholders, codes, markup and other garbage
- normalize: canonical display form or None
- parse_list: split a delimited field into unique normalized names
- is_valid_for_product: also reject a name equal to the product title
- parse_performer_name: split reading and aliases out of parentheses
- clean_performer_names: the parser-facing combination of the above
- is_valid_title: whole-record gate on the product title
"""

import logging
import re
from typing import Iterable, List, Optional

from ingestion.services.product_types import PerformerName

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 30

# Compared case-insensitively against the whole name
EXACT_BLACKLIST = {
    "unknown",
    "n/a",
    "na",
    "none",
    "null",
    "undefined",
    "anonymous",
    "various",
    "performer",
    "actress",
    "actor",
    "不明",
    "未定",
    "非公開",
    "他",
    "その他",
    "ほか",
    "出演者",
    "女優",
    "男優",
    "素人",
    "ナンパ",
    "企画",
    "熟女",
    "人妻",
    "複数",
    "---",
}

# Substrings that only occur in navigation, genre or promo text
PARTIAL_BLACKLIST = [
    "動画",
    "サンプル",
    "無料",
    "高画質",
    "カテゴリ",
    "タグ",
    "ジャンル",
    "人気",
    "ランキング",
    "新着",
    "女優一覧",
    "特集",
    "セール",
    "配信",
]

# Latin media tokens only count as whole words ("AV女優" yes, "DAVID" no)
MEDIA_TOKEN_PATTERN = re.compile(r"(?<![A-Za-z0-9])(AV|HD|4K|VR)(?![A-Za-z0-9])", re.IGNORECASE)

INVALID_NAME_PATTERNS = {
    "digits_only": re.compile(r"^\d+$"),
    "short_code": re.compile(r"^(?=.*\d)(?=.*[A-Za-z])[A-Za-z0-9]{2,8}$"),
    "single_kana_kanji": re.compile(r"^[぀-ヿ一-鿿]$"),
    "arrows": re.compile(r"[←→↑↓⇒⇔⇐↔]"),
    "symbols_only": re.compile(r"^[\W_]+$"),
    "html_tag": re.compile(r"<[^>]*>|&[a-z]+;|[<>]"),
    "url": re.compile(r"https?://|www\.", re.IGNORECASE),
    "email": re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+"),
    "repeated_punctuation": re.compile(r"^[-ー.。*＊_=~〜・…]{2,}$"),
    "product_code": re.compile(r"^[A-Za-z]{2,6}[-_]?\d{2,6}$"),
}

DEFAULT_DELIMITER_PATTERN = re.compile(r"[,、，/／・\n]+")

_PAREN_PATTERN = re.compile(r"\s*[（(]([^）)]*)[）)]\s*")
_CONNECTOR_PREFIX_PATTERN = re.compile(
    r"^(?:a\.?k\.?a\.?|also\s+known\s+as|formerly|別名|旧名|旧芸名)(?:\s*[:：]\s*|\s+)",
    re.IGNORECASE,
)
_CONNECTOR_INFIX_PATTERN = re.compile(
    r"\s+(?:a\.?k\.?a\.?|also\s+known\s+as|formerly)\s+.*$|\s*[（(]?(?:旧名|旧芸名|別名)[:：].*$",
    re.IGNORECASE,
)
_DECORATION_CHARS = "【】[]「」『』〔〕〈〉《》★☆◆◇■□●○◎♪※・:：~〜*＊#＃ "
_WHITESPACE_PATTERN = re.compile(r"\s+")
_HIRAGANA_READING_PATTERN = re.compile(r"^[ぁ-ゟー\s]+$")

PLACEHOLDER_TITLES = {
    "no title",
    "untitled",
    "タイトルなし",
    "無題",
    "not found",
    "404 not found",
    "ページが見つかりません",
    "お探しのページは見つかりませんでした",
    "error",
}


def _collapse(text: str) -> str:
    return _WHITESPACE_PATTERN.sub(" ", text.replace("　", " ")).strip()


def rejection_reason(name: Optional[str]) -> Optional[str]:
    """
    Return why a name is invalid, or None when it is acceptable.

    Args:
        name: Candidate performer name

    Returns:
        Short reason string for logging, or None
    """
    if name is None:
        return "empty"
    stripped = _collapse(str(name))
    if not stripped:
        return "empty"
    if len(stripped) < MIN_NAME_LENGTH:
        return "too_short"
    if len(stripped) > MAX_NAME_LENGTH:
        return "too_long"
    if stripped.casefold() in EXACT_BLACKLIST:
        return "blacklisted"
    for marker in PARTIAL_BLACKLIST:
        if marker in stripped:
            return f"contains:{marker}"
    token = MEDIA_TOKEN_PATTERN.search(stripped)
    if token:
        return f"contains:{token.group(1).upper()}"
    for reason, pattern in INVALID_NAME_PATTERNS.items():
        if pattern.search(stripped):
            return reason
    return None


def is_valid(name: Optional[str]) -> bool:
    """True when the name looks like a real person's name."""
    return rejection_reason(name) is None


def normalize(name: Optional[str]) -> Optional[str]:
    """
    Canonicalize a raw performer string.

    Trims and collapses whitespace, strips decorative brackets and symbols,
    removes parenthesized readings and "AKA"/"formerly" connectors, then
    re-validates.

    Returns:
        Normalized name, or None if the result is not a valid name
    """
    if name is None:
        return None
    text = _collapse(str(name))
    if not text:
        return None

    text = _CONNECTOR_PREFIX_PATTERN.sub("", text)
    text = _PAREN_PATTERN.sub(" ", text)
    text = _CONNECTOR_INFIX_PATTERN.sub("", text)
    text = _collapse(text).strip(_DECORATION_CHARS)
    text = _collapse(text)

    if not is_valid(text):
        return None
    return text


def parse_list(raw_field: Optional[str], delimiter_pattern=DEFAULT_DELIMITER_PATTERN) -> List[str]:
    """
    Split a delimited performer field into unique normalized names.

    Delimiters inside parentheses are kept so "名前（よみ/別名）" stays whole.

    Args:
        raw_field: Freeform text such as "山田花子、佐藤/Jane Doe"
        delimiter_pattern: Compiled regex or pattern string for separators

    Returns:
        Names in first-seen order, without duplicates (case-insensitive)
    """
    if not raw_field:
        return []
    if isinstance(delimiter_pattern, str):
        delimiter_pattern = re.compile(delimiter_pattern)

    # Protect parenthesized segments from splitting
    protected = {}

    def _protect(match):
        key = f"\x00{len(protected)}\x00"
        protected[key] = match.group(0)
        return key

    masked = re.sub(r"[（(][^）)]*[）)]", _protect, str(raw_field))

    names = []
    seen = set()
    for token in delimiter_pattern.split(masked):
        for key, value in protected.items():
            token = token.replace(key, value)
        normalized = normalize(token)
        if normalized is None:
            continue
        key = normalized.casefold()
        if key in seen:
            continue
        seen.add(key)
        names.append(normalized)
    return names


def is_valid_for_product(name: Optional[str], product_title: Optional[str]) -> bool:
    """Reject a name that is really the product title captured by mistake."""
    if not is_valid(name):
        return False
    if product_title and _collapse(name).casefold() == _collapse(product_title).casefold():
        return False
    return True


def parse_performer_name(raw: Optional[str]) -> Optional[PerformerName]:
    """
    Parse "name（reading）" or "name（alias1・alias2）".

    A hiragana-only parenthesized part is taken as the reading; anything
    else in parentheses is split into aliases.
    """
    name = normalize(raw)
    if name is None:
        return None

    reading = None
    aliases: List[str] = []
    for inner in _PAREN_PATTERN.findall(_collapse(str(raw))):
        inner = _collapse(inner)
        if not inner:
            continue
        if _HIRAGANA_READING_PATTERN.match(inner):
            reading = reading or inner
            continue
        inner = _CONNECTOR_PREFIX_PATTERN.sub("", inner)
        for alias in re.split(r"[・、,/／]", inner):
            alias = normalize(alias)
            if alias and alias.casefold() != name.casefold() and alias not in aliases:
                aliases.append(alias)

    return PerformerName(name=name, reading=reading, aliases=aliases)


def clean_performer_names(raw_names: Iterable[str], product_title: Optional[str] = None) -> List[PerformerName]:
    """
    Validate raw performer strings for one product.

    Invalid names are dropped and logged at debug level; they never fail
    the record.
    """
    results: List[PerformerName] = []
    seen = set()
    for raw in raw_names or []:
        parsed = parse_performer_name(raw)
        if parsed is None:
            logger.debug(
                f"ValidationRejected: performer {raw!r} ({rejection_reason(raw) or 'normalized_invalid'})"
            )
            continue
        if not is_valid_for_product(parsed.name, product_title):
            logger.debug(f"ValidationRejected: performer {raw!r} equals product title")
            continue
        key = parsed.name.casefold()
        if key in seen:
            continue
        seen.add(key)
        results.append(parsed)
    return results


def is_valid_title(title: Optional[str]) -> bool:
    """A product title must be non-empty, at least two characters and not a placeholder."""
    if not title:
        return False
    cleaned = _collapse(title)
    if len(cleaned) < MIN_NAME_LENGTH:
        return False
    if cleaned.casefold() in PLACEHOLDER_TITLES:
        return False
    if INVALID_NAME_PATTERNS["symbols_only"].match(cleaned):
        return False
    return True
