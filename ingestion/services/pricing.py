"""
Sale and price extraction.

Reconciles a struck-through "previous price" with the current price into a
SaleInfo, and parses the optional sale expiry found near the price block.

Expiry year policy: when a date omits the year ("1月5日まで", "12/31まで"),
the current year is assumed; if that moment has already passed, the date
is taken to be in the following year. Dates without a time of day expire at
23:59:59 local time. Feb 29 becomes Feb 28 in a non-leap year.
"""

import calendar
import logging
import math
import re
from datetime import datetime, timedelta
from typing import Optional

from django.utils import timezone

from ingestion.services.product_types import SaleInfo
from ingestion.utils.normalization import parse_discount_percent, parse_price, to_halfwidth

logger = logging.getLogger(__name__)

DEFAULT_SALE_TYPE = "timesale"

_END_MARKER = r"(?:まで|迄|終了|until)"

ABSOLUTE_EXPIRY_PATTERN = re.compile(
    r"(20\d{2})\s*[/年.\-]\s*(\d{1,2})\s*[/月.\-]\s*(\d{1,2})\s*日?"
    r"(?:\s*\(?[^)\d]{0,3}\)?)?(?:\s*(\d{1,2}):(\d{2}))?.{0,20}?" + _END_MARKER
)
MONTH_DAY_EXPIRY_PATTERN = re.compile(
    r"(\d{1,2})\s*[月/]\s*(\d{1,2})\s*日?"
    r"(?:\s*\(?[^)\d]{0,3}\)?)?(?:\s*(\d{1,2}):(\d{2}))?\s*" + _END_MARKER
)
RELATIVE_EXPIRY_PATTERN = re.compile(r"残り\s*(?:(\d+)\s*日)?\s*(?:(\d+)\s*時間)?")


def compute_discount_percent(regular_price: int, sale_price: int) -> int:
    """round((1 - sale/regular) * 100), halves rounded up."""
    return int(math.floor((1 - sale_price / regular_price) * 100 + 0.5))


def build_sale_info(
    regular_price: Optional[int],
    sale_price: Optional[int],
    discount_percent: Optional[int] = None,
    sale_type: str = DEFAULT_SALE_TYPE,
    sale_name: str = "",
    ends_at: Optional[datetime] = None,
) -> Optional[SaleInfo]:
    """
    Build a SaleInfo when the two prices describe a real reduction.

    Args:
        regular_price: Previous (struck-through) price
        sale_price: Current price
        discount_percent: Explicit percentage if the page states one
        sale_type: Sale category label
        sale_name: Campaign name, if any
        ends_at: Sale expiry

    Returns:
        SaleInfo, or None when either price is missing or sale >= regular
    """
    if regular_price is None or sale_price is None:
        return None
    if regular_price <= 0 or sale_price < 0:
        return None
    if sale_price >= regular_price:
        return None

    if discount_percent is None or not 0 < discount_percent < 100:
        discount_percent = compute_discount_percent(regular_price, sale_price)

    return SaleInfo(
        regular_price=regular_price,
        sale_price=sale_price,
        discount_percent=discount_percent,
        sale_type=sale_type,
        sale_name=sale_name,
        ends_at=ends_at,
    )


def _month_day_in_year(year: int, month: int, day: int, hour: int, minute: int, second: int, tz) -> datetime:
    # Feb 29 outside a leap year falls back to Feb 28
    if (month, day) == (2, 29) and not calendar.isleap(year):
        day = 28
    return datetime(year, month, day, hour, minute, second, tzinfo=tz)


def resolve_month_day(month: int, day: int, now: datetime, hour: int = 23, minute: int = 59) -> Optional[datetime]:
    """
    Resolve a year-less month/day into an aware datetime.

    Uses the year of `now`; rolls over to the next year when the resulting
    moment is already in the past. Feb 29 resolves to Feb 28 in non-leap
    years. Returns None for dates that exist in no year (e.g. 2/30).
    """
    tz = now.tzinfo or timezone.get_current_timezone()
    second = 59 if (hour, minute) == (23, 59) else 0
    try:
        candidate = _month_day_in_year(now.year, month, day, hour, minute, second, tz)
        if candidate < now:
            candidate = _month_day_in_year(now.year + 1, month, day, hour, minute, second, tz)
    except ValueError:
        logger.debug(f"Invalid sale expiry month/day {month}/{day}")
        return None
    return candidate


def parse_sale_expiry(text: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Parse a sale end date from text near the price block.

    Understands absolute dates ("2025/01/31 23:59まで"), year-less dates
    ("1月31日まで") and countdowns ("残り3日12時間").

    Args:
        text: Price block text
        now: Reference time (defaults to the current local time)

    Returns:
        Aware datetime, or None if no expiry is stated
    """
    if not text:
        return None
    now = now or timezone.localtime()
    tz = now.tzinfo or timezone.get_current_timezone()
    text = to_halfwidth(text)

    match = ABSOLUTE_EXPIRY_PATTERN.search(text)
    if match:
        year, month, day = int(match.group(1)), int(match.group(2)), int(match.group(3))
        hour = int(match.group(4)) if match.group(4) else 23
        minute = int(match.group(5)) if match.group(5) else 59
        second = 59 if match.group(4) is None else 0
        try:
            return datetime(year, month, day, hour, minute, second, tzinfo=tz)
        except ValueError:
            logger.debug(f"Invalid sale expiry date in {text[:80]!r}")
            return None

    match = MONTH_DAY_EXPIRY_PATTERN.search(text)
    if match:
        month, day = int(match.group(1)), int(match.group(2))
        if match.group(3):
            return resolve_month_day(month, day, now, int(match.group(3)), int(match.group(4)))
        return resolve_month_day(month, day, now)

    match = RELATIVE_EXPIRY_PATTERN.search(text)
    if match and (match.group(1) or match.group(2)):
        days = int(match.group(1) or 0)
        hours = int(match.group(2) or 0)
        return now + timedelta(days=days, hours=hours)

    return None


def extract_sale(
    regular_text,
    current_text,
    context_text: Optional[str] = None,
    now: Optional[datetime] = None,
    sale_type: str = DEFAULT_SALE_TYPE,
    sale_name: str = "",
) -> Optional[SaleInfo]:
    """
    Reconcile struck-through and current price text into a SaleInfo.

    Args:
        regular_text: Struck-through / previous price text (or int)
        current_text: Current price text (or int)
        context_text: Surrounding text searched for "N% OFF" and an expiry
        now: Reference time for expiry parsing

    Returns:
        SaleInfo when regular > current, otherwise None
    """
    regular = parse_price(regular_text)
    current = parse_price(current_text)
    if regular is None or current is None:
        return None
    if current >= regular:
        return None

    haystack = " ".join(str(t) for t in (context_text, regular_text, current_text) if t)
    discount = parse_discount_percent(haystack)
    ends_at = parse_sale_expiry(context_text, now) if context_text else None

    return build_sale_info(
        regular,
        current,
        discount_percent=discount,
        sale_type=sale_type,
        sale_name=sale_name,
        ends_at=ends_at,
    )
