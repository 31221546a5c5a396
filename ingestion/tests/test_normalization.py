"""
Tests for the shared text normalization helpers.
"""

from datetime import date

import pytest

from ingestion.utils.normalization import (
    clean_text,
    parse_discount_percent,
    parse_duration_minutes,
    parse_price,
    parse_prices,
    parse_release_date,
    to_halfwidth,
)


class TestParsePrice:
    """Tests for yen price parsing."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("1,980円", 1980),
            ("¥980", 980),
            ("￥ 2,480", 2480),
            ("５００pt", 500),
            ("1980", 1980),
            (1980, 1980),
            ("価格: 3,300円(税込)", 3300),
        ],
    )
    def test_parses_currency_text(self, text, expected):
        """Common storefront price formats resolve to integer yen."""
        assert parse_price(text) == expected

    @pytest.mark.parametrize("text", [None, True, "", "無料配信中", -5])
    def test_uninterpretable_input_returns_none(self, text):
        """Input without an amount returns None instead of raising."""
        assert parse_price(text) is None

    def test_parse_prices_keeps_order(self):
        """Every amount is returned in order of appearance."""
        assert parse_prices("通常価格 1,980円 → 980円") == [1980, 980]

    def test_parse_prices_empty(self):
        assert parse_prices(None) == []


class TestParseDiscountPercent:
    """Tests for explicit discount tokens."""

    def test_ascii_off(self):
        assert parse_discount_percent("30% OFF") == 30

    def test_fullwidth_japanese(self):
        """Full-width digits and percent sign are accepted."""
        assert parse_discount_percent("５０％オフ") == 50

    def test_out_of_range_ignored(self):
        """0% and 100% are not real discounts."""
        assert parse_discount_percent("100% OFF") is None
        assert parse_discount_percent("0%引き") is None

    def test_missing_token(self):
        assert parse_discount_percent("1,980円") is None


class TestParseReleaseDate:
    """Tests for release date parsing."""

    @pytest.mark.parametrize(
        "text",
        [
            "2024年1月5日",
            "2024/01/05",
            "2024-01-05",
            "2024.1.5",
            "20240105",
            "Jan 5, 2024",
            "配信開始日：２０２４年１月５日",
        ],
    )
    def test_supported_formats(self, text):
        assert parse_release_date(text) == date(2024, 1, 5)

    def test_invalid_calendar_date(self):
        """A date that does not exist is rejected, not clamped."""
        assert parse_release_date("2024年2月30日") is None

    def test_unrecognized_text(self):
        assert parse_release_date("coming soon") is None
        assert parse_release_date(None) is None

    def test_date_passthrough(self):
        assert parse_release_date(date(2023, 12, 1)) == date(2023, 12, 1)


class TestParseDurationMinutes:
    """Tests for running time parsing."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("120分", 120),
            ("2時間5分", 125),
            ("1:58:30", 118),
            ("PT1H58M30S", 118),
            ("90", 90),
            ("45 min", 45),
            ("収録時間：９０分", 90),
        ],
    )
    def test_supported_formats(self, text, expected):
        assert parse_duration_minutes(text) == expected

    @pytest.mark.parametrize("text", ["0分", "0", "", None, "unknown"])
    def test_zero_or_unknown_is_none(self, text):
        """A zero duration means the source did not know it."""
        assert parse_duration_minutes(text) is None


class TestCleanText:
    """Tests for whitespace cleanup."""

    def test_collapses_whitespace(self):
        assert clean_text("  山田\n\t花子　さん ") == "山田 花子 さん"

    def test_blank_is_none(self):
        assert clean_text("   ") is None
        assert clean_text(None) is None

    def test_halfwidth_conversion(self):
        assert to_halfwidth("１，９８０％") == "1,980%"
