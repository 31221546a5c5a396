"""
Text normalization helpers shared by API clients and HTML parsers.

Provides:
- parse_price / parse_prices: yen amounts ("1,980円", "¥980", "500pt")
- parse_discount_percent: "30% OFF", "30%オフ", "30%引き"
- parse_release_date: 2024年1月5日, 2024/01/05, 2024-01-05, "Jan 5, 2024"
- parse_duration_minutes: "120分", "2時間5分", "1:58:30", "PT1H58M30S"
- clean_text: whitespace collapsing for extracted text nodes

All functions return None for input they cannot interpret; they never raise.
"""

import re
from datetime import date, datetime
from typing import List, Optional

# Full-width digits and punctuation commonly seen on Japanese storefronts
_FULLWIDTH_TABLE = str.maketrans(
    "０１２３４５６７８９，．％／：",
    "0123456789,.%/:",
)

_PRICE_PATTERN = re.compile(
    r"(?:[¥￥]\s*([\d,]+)|([\d,]+)\s*(?:円|pt|ポイント|yen))",
    re.IGNORECASE,
)
_BARE_NUMBER_PATTERN = re.compile(r"^\s*([\d,]+)\s*$")

_DISCOUNT_PATTERN = re.compile(r"(\d{1,3})\s*%\s*(?:OFF|オフ|引き|割引)", re.IGNORECASE)

_JP_DATE_PATTERN = re.compile(r"(\d{4})\s*年\s*(\d{1,2})\s*月\s*(\d{1,2})\s*日")
_NUMERIC_DATE_PATTERN = re.compile(r"(\d{4})[/.\-](\d{1,2})[/.\-](\d{1,2})")
_COMPACT_DATE_PATTERN = re.compile(r"^(\d{4})(\d{2})(\d{2})$")
_ENGLISH_DATE_FORMATS = ["%b %d, %Y", "%B %d, %Y", "%d %b %Y", "%d %B %Y"]

_ISO_DURATION_PATTERN = re.compile(
    r"P?T?(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?", re.IGNORECASE
)
_HMS_PATTERN = re.compile(r"(\d{1,2}):(\d{2}):(\d{2})")
_JP_HOURS_MINUTES_PATTERN = re.compile(r"(\d+)\s*時間\s*(?:(\d+)\s*分)?")
_JP_MINUTES_PATTERN = re.compile(r"(\d+)\s*分")
_EN_MINUTES_PATTERN = re.compile(r"(\d+)\s*min", re.IGNORECASE)

_WHITESPACE_PATTERN = re.compile(r"\s+")


def to_halfwidth(text: str) -> str:
    """Convert full-width digits and price punctuation to ASCII."""
    return text.translate(_FULLWIDTH_TABLE)


def clean_text(text: Optional[str]) -> Optional[str]:
    """Collapse whitespace (including ideographic spaces) and strip."""
    if text is None:
        return None
    cleaned = _WHITESPACE_PATTERN.sub(" ", text.replace("　", " ")).strip()
    return cleaned or None


def _to_int(digits: str) -> Optional[int]:
    digits = digits.replace(",", "")
    if not digits.isdigit():
        return None
    return int(digits)


def parse_prices(text: Optional[str]) -> List[int]:
    """
    Extract every yen amount in the text, in order of appearance.

    Args:
        text: Free text such as "通常価格 1,980円 → 980円"

    Returns:
        List of integer amounts (empty when nothing matched)
    """
    if not text:
        return []
    text = to_halfwidth(text)
    amounts = []
    for match in _PRICE_PATTERN.finditer(text):
        value = _to_int(match.group(1) or match.group(2))
        if value is not None:
            amounts.append(value)
    return amounts


def parse_price(text) -> Optional[int]:
    """
    Parse a single price.

    Accepts ints, numeric strings ("1980", "1,980") and currency text
    ("¥1,980", "1,980円", "500pt"). Returns the first amount found.
    """
    if text is None:
        return None
    if isinstance(text, bool):
        return None
    if isinstance(text, int):
        return text if text >= 0 else None
    if isinstance(text, float):
        return int(text) if text >= 0 else None

    text = to_halfwidth(str(text))
    bare = _BARE_NUMBER_PATTERN.match(text)
    if bare:
        return _to_int(bare.group(1))

    amounts = parse_prices(text)
    return amounts[0] if amounts else None


def parse_discount_percent(text: Optional[str]) -> Optional[int]:
    """Return N from an explicit "N% OFF" style token, if present."""
    if not text:
        return None
    match = _DISCOUNT_PATTERN.search(to_halfwidth(text))
    if not match:
        return None
    percent = int(match.group(1))
    if 0 < percent < 100:
        return percent
    return None


def parse_release_date(text) -> Optional[date]:
    """
    Parse a release date in the formats the sources publish.

    Args:
        text: Date text, a date, or a datetime

    Returns:
        date or None if the text has no recognizable date
    """
    if text is None:
        return None
    if isinstance(text, datetime):
        return text.date()
    if isinstance(text, date):
        return text

    text = to_halfwidth(str(text)).strip()
    if not text:
        return None

    for pattern in (_JP_DATE_PATTERN, _NUMERIC_DATE_PATTERN, _COMPACT_DATE_PATTERN):
        match = pattern.search(text)
        if match:
            try:
                return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
            except ValueError:
                return None

    for fmt in _ENGLISH_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def parse_duration_minutes(text) -> Optional[int]:
    """
    Parse a running time into whole minutes.

    Seconds are rounded down; a duration of zero is treated as unknown.
    """
    if text is None:
        return None
    if isinstance(text, bool):
        return None
    if isinstance(text, int):
        return text if text > 0 else None

    text = to_halfwidth(str(text)).strip()
    if not text:
        return None

    if text.isdigit():
        minutes = int(text)
        return minutes if minutes > 0 else None

    minutes = None
    iso = _ISO_DURATION_PATTERN.fullmatch(text)
    if iso and any(iso.groups()):
        hours, mins, _secs = (int(g) if g else 0 for g in iso.groups())
        minutes = hours * 60 + mins
    else:
        hms = _HMS_PATTERN.search(text)
        jp_hours = _JP_HOURS_MINUTES_PATTERN.search(text)
        jp_minutes = _JP_MINUTES_PATTERN.search(text)
        en_minutes = _EN_MINUTES_PATTERN.search(text)
        if hms:
            minutes = int(hms.group(1)) * 60 + int(hms.group(2))
        elif jp_hours:
            minutes = int(jp_hours.group(1)) * 60 + int(jp_hours.group(2) or 0)
        elif jp_minutes:
            minutes = int(jp_minutes.group(1))
        elif en_minutes:
            minutes = int(en_minutes.group(1))

    if minutes is None or minutes <= 0:
        return None
    return minutes
