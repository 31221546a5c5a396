"""
Tests for declarative vendor field mapping.
"""

from datetime import date

import pytest

from ingestion.clients.field_mapping import FieldRule, normalize_record, resolve_path, to_intermediate
from ingestion.exceptions import ValidationRejected


class TestResolvePath:
    """Tests for mapping path resolution."""

    def test_nested_keys(self):
        assert resolve_path({"imageURL": {"large": "https://x/l.jpg"}}, "imageURL.large") == "https://x/l.jpg"

    def test_list_collection(self):
        record = {"performer": [{"data": {"name": "山田花子"}}, {"data": {"name": "佐藤美咲"}}]}
        assert resolve_path(record, "performer[].data.name") == ["山田花子", "佐藤美咲"]

    def test_list_index(self):
        assert resolve_path(["1001", "2024-01-05"], "1") == "2024-01-05"

    def test_missing_path(self):
        assert resolve_path({"a": {}}, "a.b") is None
        assert resolve_path({"a": []}, "a[].b") is None
        assert resolve_path(["x"], "5") is None


class TestNormalizeRecord:
    """Tests for first-match field extraction."""

    def test_first_non_empty_candidate_wins(self):
        mapping = {"title": FieldRule(("name", "title"))}
        assert normalize_record({"name": "", "title": " Summer  Story "}, mapping) == {"title": "Summer Story"}

    def test_unmatched_fields_are_left_out(self):
        mapping = {"title": FieldRule(("title",)), "price": FieldRule(("price",), "price")}
        assert normalize_record({"title": "Summer Story"}, mapping) == {"title": "Summer Story"}

    def test_converters(self):
        mapping = {
            "source_local_id": FieldRule(("id",), "id"),
            "release_date": FieldRule(("date",), "date"),
            "duration_minutes": FieldRule(("volume",), "minutes"),
            "price": FieldRule(("price",), "price"),
            "sample_image_urls": FieldRule(("images[]",), "url_list"),
        }
        fields = normalize_record(
            {
                "id": 123,
                "date": "2024/01/05",
                "volume": "120分",
                "price": "1,980円",
                "images": ["//cdn.example.com/1.jpg", "not-a-url", "//cdn.example.com/1.jpg"],
            },
            mapping,
        )
        assert fields == {
            "source_local_id": "123",
            "release_date": date(2024, 1, 5),
            "duration_minutes": 120,
            "price": 1980,
            "sample_image_urls": ["https://cdn.example.com/1.jpg"],
        }

    def test_transform_applies_to_lists(self):
        mapping = {"sample_image_urls": FieldRule(("images[]",), "url_list", transform=str.upper)}
        fields = normalize_record({"images": ["https://a/1.jpg"]}, mapping)
        assert fields["sample_image_urls"] == ["HTTPS://A/1.JPG"]


class TestToIntermediate:
    """Tests for building IntermediateProduct from mapped fields."""

    def test_sale_from_list_price(self):
        product = to_intermediate(
            "duga",
            {"source_local_id": "x-1", "title": "Summer Story", "price": 980, "list_price": 1980},
            raw={"productid": "x-1"},
        )
        assert product.price == 980
        assert product.sale_info.regular_price == 1980
        assert product.sale_info.discount_percent == 51
        assert product.raw_data == {"productid": "x-1"}

    def test_no_sale_without_reduction(self):
        product = to_intermediate("duga", {"source_local_id": "x-1", "title": "T", "price": 980})
        assert product.price == 980
        assert product.sale_info is None

    @pytest.mark.parametrize("local_id", [None, "", "   "])
    def test_missing_id_is_rejected(self, local_id):
        fields = {"title": "有効なタイトル作品"}
        if local_id is not None:
            fields["source_local_id"] = local_id

        with pytest.raises(ValidationRejected) as exc_info:
            to_intermediate("duga", fields)

        assert exc_info.value.field == "source_local_id"

    def test_id_is_stripped(self):
        product = to_intermediate("duga", {"source_local_id": " ppv-1 ", "title": "T"})
        assert product.source_local_id == "ppv-1"

    def test_csv_row_raw_data(self):
        product = to_intermediate("b10f", {"source_local_id": "1"}, raw=["1", "2024-01-05"])
        assert product.raw_data == {"row": ["1", "2024-01-05"]}
