"""
Tests for sale detection and sale expiry parsing.
"""

from datetime import datetime, timedelta, timezone

import pytest

from ingestion.services.pricing import (
    DEFAULT_SALE_TYPE,
    build_sale_info,
    compute_discount_percent,
    extract_sale,
    parse_sale_expiry,
    resolve_month_day,
)

JST = timezone(timedelta(hours=9))


class TestBuildSaleInfo:
    """Tests for the regular/sale price reconciliation."""

    def test_computes_discount(self):
        info = build_sale_info(1980, 980)
        assert info.regular_price == 1980
        assert info.sale_price == 980
        assert info.discount_percent == 51
        assert info.sale_type == DEFAULT_SALE_TYPE

    def test_explicit_discount_wins(self):
        """A percentage stated on the page is kept as-is."""
        info = build_sale_info(2000, 1000, discount_percent=45)
        assert info.discount_percent == 45

    def test_implausible_explicit_discount_is_recomputed(self):
        info = build_sale_info(2000, 1000, discount_percent=100)
        assert info.discount_percent == 50

    @pytest.mark.parametrize(
        "regular,sale",
        [(980, 980), (980, 1980), (None, 980), (1980, None), (0, 0)],
    )
    def test_no_sale(self, regular, sale):
        """Sale price must be strictly lower than the regular price."""
        assert build_sale_info(regular, sale) is None

    def test_half_rounds_up(self):
        assert compute_discount_percent(200, 199) == 1
        assert compute_discount_percent(1000, 995) == 1


class TestParseSaleExpiry:
    """Tests for sale end dates near the price block."""

    def test_absolute_date_with_time(self):
        now = datetime(2024, 12, 20, 10, 0, tzinfo=JST)
        ends_at = parse_sale_expiry("セール期間：2025/01/31 23:59まで", now)
        assert ends_at == datetime(2025, 1, 31, 23, 59, 0, tzinfo=JST)

    def test_absolute_date_without_time_ends_at_day_end(self):
        now = datetime(2024, 12, 20, 10, 0, tzinfo=JST)
        ends_at = parse_sale_expiry("2025年1月31日(金)まで", now)
        assert ends_at == datetime(2025, 1, 31, 23, 59, 59, tzinfo=JST)

    def test_month_day_in_current_year(self):
        now = datetime(2024, 6, 1, 12, 0, tzinfo=JST)
        ends_at = parse_sale_expiry("6月30日まで", now)
        assert ends_at == datetime(2024, 6, 30, 23, 59, 59, tzinfo=JST)

    def test_month_day_rolls_over_to_next_year(self):
        """A year-less date already in the past belongs to next year."""
        now = datetime(2024, 12, 20, 10, 0, tzinfo=JST)
        ends_at = parse_sale_expiry("1月5日まで", now)
        assert ends_at == datetime(2025, 1, 5, 23, 59, 59, tzinfo=JST)

    def test_slash_month_day_with_time(self):
        now = datetime(2024, 3, 1, 9, 0, tzinfo=JST)
        ends_at = parse_sale_expiry("3/10 12:00まで", now)
        assert ends_at == datetime(2024, 3, 10, 12, 0, 0, tzinfo=JST)

    def test_relative_countdown(self):
        now = datetime(2024, 3, 1, 9, 0, tzinfo=JST)
        assert parse_sale_expiry("残り3日12時間", now) == now + timedelta(days=3, hours=12)

    def test_no_expiry(self):
        now = datetime(2024, 3, 1, 9, 0, tzinfo=JST)
        assert parse_sale_expiry("期間限定セール", now) is None
        assert parse_sale_expiry(None, now) is None

    def test_leap_day_outside_leap_year(self):
        """Feb 29 without a year falls back to Feb 28 in non-leap years."""
        assert resolve_month_day(2, 29, datetime(2023, 3, 1, tzinfo=JST)) == datetime(
            2024, 2, 29, 23, 59, 59, tzinfo=JST
        )
        assert resolve_month_day(2, 29, datetime(2024, 3, 1, tzinfo=JST)) == datetime(
            2025, 2, 28, 23, 59, 59, tzinfo=JST
        )
        assert resolve_month_day(2, 29, datetime(2025, 1, 10, tzinfo=JST)) == datetime(
            2025, 2, 28, 23, 59, 59, tzinfo=JST
        )

    def test_leap_day_text_in_non_leap_year(self):
        now = datetime(2025, 2, 1, 9, 0, tzinfo=JST)
        assert parse_sale_expiry("2月29日まで", now) == datetime(2025, 2, 28, 23, 59, 59, tzinfo=JST)

    def test_impossible_month_day(self):
        assert resolve_month_day(2, 30, datetime(2024, 1, 1, tzinfo=JST)) is None

    def test_year_end_date_on_last_day_stays_in_year(self):
        now = datetime(2024, 12, 31, 12, 0, tzinfo=JST)
        assert parse_sale_expiry("12/31まで", now) == datetime(2024, 12, 31, 23, 59, 59, tzinfo=JST)

    def test_december_date_seen_in_january_is_next_december(self):
        now = datetime(2025, 1, 2, 9, 0, tzinfo=JST)
        assert parse_sale_expiry("12月31日まで", now) == datetime(2025, 12, 31, 23, 59, 59, tzinfo=JST)

    def test_january_date_seen_on_new_years_eve(self):
        now = datetime(2024, 12, 31, 23, 0, tzinfo=JST)
        assert parse_sale_expiry("1/3まで", now) == datetime(2025, 1, 3, 23, 59, 59, tzinfo=JST)


class TestExtractSale:
    """Tests for price-text reconciliation."""

    def test_sale_with_context(self):
        now = datetime(2024, 12, 20, 10, 0, tzinfo=JST)
        info = extract_sale("1,980円", "980円", "50%OFF 1月5日まで", now=now)
        assert info.regular_price == 1980
        assert info.sale_price == 980
        assert info.discount_percent == 50
        assert info.ends_at == datetime(2025, 1, 5, 23, 59, 59, tzinfo=JST)

    def test_same_price_is_not_a_sale(self):
        assert extract_sale("980円", "980円") is None

    def test_higher_current_price_is_not_a_sale(self):
        assert extract_sale("980円", "1,980円") is None

    def test_missing_price(self):
        assert extract_sale(None, "980円") is None

    def test_sale_name_and_type(self):
        info = extract_sale(1980, 1480, sale_type="campaign", sale_name="夏のセール")
        assert info.sale_type == "campaign"
        assert info.sale_name == "夏のセール"
        assert info.ends_at is None
