"""
Tests for canonical upsert and sale tracking.
"""

from datetime import date, timedelta
from unittest.mock import patch

import pytest
from django.db import IntegrityError
from django.utils import timezone

from ingestion.exceptions import PersistenceConflict, ValidationRejected
from ingestion.models import (
    CanonicalProduct,
    Performer,
    PerformerAlias,
    ProductRawDataLink,
    ProductSource,
    SaleRecord,
)
from ingestion.services.product_types import PerformerName, ProductIdentity, ProductPatch, SaleInfo
from ingestion.services.raw_store import RawResponseStore
from ingestion.services.resolver import Resolver

IDENTITY = ProductIdentity(source="duga", source_local_id="PPV-0001")


def make_patch(**kwargs) -> ProductPatch:
    kwargs.setdefault("title", "真夏の恋物語 第二章")
    kwargs.setdefault("data_origin", "api")
    return ProductPatch(**kwargs)


@pytest.mark.django_db
class TestResolverUpsert:
    """Tests for product convergence."""

    def test_creates_product_and_listing(self, duga_source):
        result = Resolver().upsert(
            IDENTITY,
            make_patch(
                description="海辺の物語",
                release_date=date(2024, 1, 5),
                duration_minutes=120,
                thumbnail_url="https://img.duga.jp/1/jacket.jpg",
                price=1980,
                affiliate_url="https://click.duga.jp/ppv/0001",
            ),
        )

        assert result.created is True
        assert result.product.normalized_id == "duga-ppv-0001"
        assert result.product.default_thumbnail_url == "https://img.duga.jp/1/jacket.jpg"
        assert result.product_source.price == 1980
        assert result.product_source.source_local_id == "PPV-0001"
        assert result.images_added == 1

    def test_reingestion_converges_on_one_row(self, duga_source):
        resolver = Resolver()
        resolver.upsert(IDENTITY, make_patch(title="旧タイトルの作品"))

        result = resolver.upsert(IDENTITY, make_patch(title="新タイトルの作品"))

        assert result.created is False
        assert CanonicalProduct.objects.count() == 1
        assert ProductSource.objects.count() == 1
        assert CanonicalProduct.objects.get().title == "新タイトルの作品"

    def test_missing_values_do_not_overwrite(self, duga_source):
        resolver = Resolver()
        resolver.upsert(IDENTITY, make_patch(description="海辺の物語", duration_minutes=120, price=1980))

        resolver.upsert(IDENTITY, make_patch())

        product = CanonicalProduct.objects.get()
        assert product.description == "海辺の物語"
        assert product.duration_minutes == 120
        assert ProductSource.objects.get().price == 1980

    def test_children_are_merged_additively(self, duga_source):
        resolver = Resolver()
        resolver.upsert(
            IDENTITY,
            make_patch(
                sample_image_urls=["https://img/1.jpg", "https://img/2.jpg"],
                sample_video_urls=["https://img/s.mp4"],
                genre_names=["ドラマ"],
            ),
            [PerformerName(name="山田花子")],
        )

        result = resolver.upsert(
            IDENTITY,
            make_patch(
                sample_image_urls=["https://img/2.jpg", "https://img/3.jpg"],
                genre_names=["ドラマ", "恋愛"],
            ),
            [PerformerName(name="佐藤美咲")],
        )

        product = result.product
        assert result.images_added == 1
        assert list(product.images.order_by("display_order").values_list("url", flat=True)) == [
            "https://img/1.jpg",
            "https://img/2.jpg",
            "https://img/3.jpg",
        ]
        assert product.videos.count() == 1
        assert set(product.performers.values_list("name", flat=True)) == {"山田花子", "佐藤美咲"}
        assert set(product.categories.values_list("name", flat=True)) == {"ドラマ", "恋愛"}

    def test_persistent_integrity_error_raises_conflict(self, duga_source):
        resolver = Resolver(max_attempts=2)
        with patch.object(resolver, "_apply", side_effect=IntegrityError("duplicate key")) as apply:
            with pytest.raises(PersistenceConflict):
                resolver.upsert(IDENTITY, make_patch())
        assert apply.call_count == 2

    def test_transient_integrity_error_is_retried(self, duga_source):
        resolver = Resolver(max_attempts=3)
        real_apply = resolver._apply
        calls = []

        def flaky(*args):
            calls.append(args)
            if len(calls) == 1:
                raise IntegrityError("duplicate key")
            return real_apply(*args)

        with patch.object(resolver, "_apply", side_effect=flaky):
            result = resolver.upsert(IDENTITY, make_patch())

        assert result.created is True
        assert len(calls) == 2


@pytest.mark.django_db
class TestResolvePerformer:
    """Tests for performer identity."""

    def test_name_match_is_case_insensitive(self):
        resolver = Resolver()
        first = resolver.resolve_performer(PerformerName(name="Maria Ozawa"))
        second = resolver.resolve_performer(PerformerName(name="maria ozawa"))

        assert first.pk == second.pk
        assert Performer.objects.count() == 1

    def test_alias_resolves_to_existing_performer(self):
        resolver = Resolver(store_performer_details=True)
        performer = resolver.resolve_performer(
            PerformerName(name="山田花子", reading="やまだはなこ", aliases=["ハナコ"])
        )

        assert performer.reading == "やまだはなこ"
        assert PerformerAlias.objects.filter(alias="ハナコ").exists()
        assert resolver.resolve_performer(PerformerName(name="ハナコ")).pk == performer.pk

    def test_details_not_stored_without_enrichment(self):
        performer = Resolver().resolve_performer(
            PerformerName(name="山田花子", reading="やまだはなこ", aliases=["ハナコ"])
        )

        assert performer.reading == ""
        assert PerformerAlias.objects.count() == 0


@pytest.mark.django_db
class TestRawLink:
    """Tests for provenance links."""

    def test_link_is_updated_in_place(self, heyzo_source):
        resolver = Resolver()
        result = resolver.upsert(ProductIdentity("heyzo", "3001"), make_patch(data_origin="html"))
        store = RawResponseStore()
        raw = store.save(heyzo_source, "3001", "", "<html>v1</html>").raw

        resolver.link_raw_response(result.product, raw)
        raw = store.save(heyzo_source, "3001", "", "<html>v2</html>").raw
        link = resolver.link_raw_response(result.product, raw)

        assert ProductRawDataLink.objects.count() == 1
        assert link.content_hash == raw.content_hash


@pytest.mark.django_db
class TestSales:
    """Tests for sale records."""

    def _listing(self):
        return Resolver().upsert(IDENTITY, make_patch(price=1980)).product_source

    def test_record_sale(self, duga_source):
        listing = self._listing()
        ends_at = timezone.now() + timedelta(days=3)

        sale = Resolver().record_sale(
            listing, SaleInfo(regular_price=1980, sale_price=980, discount_percent=51, ends_at=ends_at)
        )

        assert sale.is_active is True
        assert sale.discount_percent == 51
        assert sale.source_local_id == "PPV-0001"

    def test_sale_is_updated_not_duplicated(self, duga_source):
        listing = self._listing()
        resolver = Resolver()
        resolver.record_sale(listing, SaleInfo(regular_price=1980, sale_price=980, discount_percent=51))
        resolver.record_sale(listing, SaleInfo(regular_price=1980, sale_price=1480, discount_percent=25))

        assert SaleRecord.objects.count() == 1
        assert SaleRecord.objects.get().sale_price == 1480

    def test_missing_sale_deactivates(self, duga_source):
        listing = self._listing()
        resolver = Resolver()
        resolver.record_sale(listing, SaleInfo(regular_price=1980, sale_price=980, discount_percent=51))

        assert resolver.record_sale(listing, None) is None
        assert SaleRecord.objects.get().is_active is False

    def test_sale_not_below_regular_price(self, duga_source):
        listing = self._listing()
        with pytest.raises(ValidationRejected):
            Resolver().record_sale(listing, SaleInfo(regular_price=980, sale_price=980, discount_percent=0))
        assert SaleRecord.objects.count() == 0

    def test_deactivate_expired_sales(self, duga_source):
        listing = self._listing()
        sale = Resolver().record_sale(
            listing,
            SaleInfo(
                regular_price=1980,
                sale_price=980,
                discount_percent=51,
                ends_at=timezone.now() - timedelta(minutes=1),
            ),
        )

        assert Resolver.deactivate_expired_sales() == 1
        sale.refresh_from_db()
        assert sale.is_active is False
        assert sale.is_expired() is True
