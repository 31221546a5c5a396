"""
Tests for performer name validation and normalization.
"""

import pytest

from ingestion.services import names


class TestIsValid:
    """Tests for rejecting garbage performer strings."""

    @pytest.mark.parametrize(
        "name",
        ["", "   ", None, "12345", "---", "<script>", "a@b.com", "ABC-123", "あ", "不明", "人気女優ランキング", "https://example.com"],
    )
    def test_rejects_garbage(self, name):
        assert names.is_valid(name) is False

    @pytest.mark.parametrize("name", ["山田花子", "Jane Doe", "さくら"])
    def test_accepts_real_names(self, name):
        assert names.is_valid(name) is True

    @pytest.mark.parametrize("name", ["DAVID", "Ava Addams", "Hayden", "Vrinda"])
    def test_media_letters_inside_latin_names_are_allowed(self, name):
        assert names.is_valid(name) is True

    @pytest.mark.parametrize("name", ["AV女優", "VR専用", "HD版", "4K作品", "Best AV"])
    def test_media_tokens_are_rejected(self, name):
        assert names.rejection_reason(name).startswith("contains:")

    def test_rejection_reason_is_reported(self):
        """The reason is used in debug logs when a name is dropped."""
        assert names.rejection_reason("12345") == "digits_only"
        assert names.rejection_reason("あ") == "too_short"
        assert names.rejection_reason("山田花子") is None


class TestNormalize:
    """Tests for canonical display names."""

    def test_strips_reading_and_whitespace(self):
        assert names.normalize("　山田花子（やまだはなこ）　") == "山田花子"

    def test_strips_connector_prefix(self):
        assert names.normalize("AKA: Jane") == "Jane"

    def test_strips_decoration(self):
        assert names.normalize("★山田花子★") == "山田花子"
        assert names.normalize("【佐藤美咲】") == "佐藤美咲"

    def test_invalid_after_cleanup(self):
        """Normalization that leaves nothing usable returns None."""
        assert names.normalize("★★★") is None
        assert names.normalize(None) is None


class TestParseList:
    """Tests for splitting delimited performer fields."""

    def test_splits_mixed_delimiters(self):
        assert names.parse_list("山田花子、佐藤美咲/Jane Doe") == ["山田花子", "佐藤美咲", "Jane Doe"]

    def test_deduplicates_case_insensitively(self):
        assert names.parse_list("Jane Doe, jane doe, 山田花子、山田花子") == ["Jane Doe", "山田花子"]

    def test_parenthesized_delimiters_not_split(self):
        """A slash inside parentheses belongs to the same performer."""
        assert names.parse_list("美咲（佐藤花子/Hana）、山田花子") == ["美咲", "山田花子"]

    def test_drops_invalid_tokens(self):
        assert names.parse_list("山田花子、不明、12345") == ["山田花子"]

    def test_empty(self):
        assert names.parse_list("") == []
        assert names.parse_list(None) == []


class TestParsePerformerName:
    """Tests for reading and alias extraction."""

    def test_hiragana_reading(self):
        parsed = names.parse_performer_name("山田花子（やまだはなこ）")
        assert parsed.name == "山田花子"
        assert parsed.reading == "やまだはなこ"
        assert parsed.aliases == []

    def test_aliases(self):
        parsed = names.parse_performer_name("美咲（佐藤花子・Hana）")
        assert parsed.name == "美咲"
        assert parsed.reading is None
        assert parsed.aliases == ["佐藤花子", "Hana"]

    def test_invalid_returns_none(self):
        assert names.parse_performer_name("不明") is None


class TestCleanPerformerNames:
    """Tests for the parser-facing performer cleanup."""

    def test_drops_invalid_and_title_names(self):
        """Names equal to the product title are captured by mistake and dropped."""
        result = names.clean_performer_names(
            ["山田花子", "不明", "Summer Story", "山田花子"],
            product_title="Summer Story",
        )
        assert [p.name for p in result] == ["山田花子"]

    def test_empty_input(self):
        assert names.clean_performer_names([]) == []
        assert names.clean_performer_names(None) == []


class TestIsValidTitle:
    """Tests for the whole-record title gate."""

    @pytest.mark.parametrize("title", ["", None, "a", "無題", "404 Not Found", "!!!"])
    def test_rejects_placeholders(self, title):
        assert names.is_valid_title(title) is False

    def test_accepts_real_title(self):
        assert names.is_valid_title("真夏の恋物語 第2章") is True
