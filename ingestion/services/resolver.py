"""
Identity resolution and canonical upsert.

Resolver is the only code path allowed to create or modify a
CanonicalProduct. Each upsert is a single transaction around
update_or_create on the unique normalized_id; an IntegrityError from a
concurrent writer rolls the transaction back and the whole upsert is
retried. Children are reconciled additively: new images, videos,
performers and categories are appended and existing links are never
removed.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from ingestion.exceptions import PersistenceConflict, ValidationRejected
from ingestion.models import (
    CanonicalProduct,
    CatalogSource,
    Category,
    ImageType,
    Performer,
    PerformerAlias,
    ProductCategory,
    ProductImage,
    ProductPerformer,
    ProductRawDataLink,
    ProductSource,
    ProductVideo,
    RawResponse,
    SaleRecord,
)
from ingestion.services.product_types import PerformerName, ProductIdentity, ProductPatch, SaleInfo

logger = logging.getLogger(__name__)


@dataclass
class UpsertResult:
    """Outcome of Resolver.upsert."""

    product: CanonicalProduct
    product_source: ProductSource
    created: bool
    images_added: int = 0
    videos_added: int = 0
    performers_linked: int = 0
    categories_linked: int = 0


class Resolver:
    """
    Map (source, source-local id) identities onto canonical products.

    Args:
        max_attempts: Upsert attempts before PersistenceConflict
            (default INGEST_UPSERT_MAX_ATTEMPTS)
        store_performer_details: Persist readings and aliases parsed from
            raw performer names
    """

    def __init__(self, max_attempts: Optional[int] = None, store_performer_details: bool = False):
        self.max_attempts = max_attempts or getattr(settings, "INGEST_UPSERT_MAX_ATTEMPTS", 3)
        self.store_performer_details = store_performer_details
        self._sources: Dict[str, CatalogSource] = {}

    def _get_source(self, slug: str) -> CatalogSource:
        if slug not in self._sources:
            self._sources[slug] = CatalogSource.objects.get(slug=slug)
        return self._sources[slug]

    def upsert(
        self,
        identity: ProductIdentity,
        patch: ProductPatch,
        performers: Optional[List[PerformerName]] = None,
    ) -> UpsertResult:
        """
        Create or update the canonical product for an identity.

        Args:
            identity: Source and source-local id
            patch: Field values and child URLs from the current pass
            performers: Validated performer names to link

        Returns:
            UpsertResult with created flag and child counters

        Raises:
            PersistenceConflict: If concurrent writers kept conflicting
        """
        last_error = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                with transaction.atomic():
                    return self._apply(identity, patch, performers or [])
            except IntegrityError as e:
                last_error = e
                logger.warning(
                    f"PersistenceConflict on {identity.normalized_id} "
                    f"(attempt {attempt}/{self.max_attempts}): {e}"
                )

        raise PersistenceConflict(
            f"Upsert of {identity.normalized_id} failed after {self.max_attempts} attempts: {last_error}"
        )

    def _apply(self, identity: ProductIdentity, patch: ProductPatch, performers: List[PerformerName]) -> UpsertResult:
        source = self._get_source(identity.source)
        now = timezone.now()

        defaults = {"title": patch.title, "updated_at": now}
        if patch.description is not None:
            defaults["description"] = patch.description
        if patch.release_date is not None:
            defaults["release_date"] = patch.release_date
        if patch.duration_minutes is not None:
            defaults["duration_minutes"] = patch.duration_minutes
        if patch.thumbnail_url:
            defaults["default_thumbnail_url"] = patch.thumbnail_url

        product, created = CanonicalProduct.objects.update_or_create(
            normalized_id=identity.normalized_id,
            defaults=defaults,
        )

        source_defaults = {
            "source_local_id": identity.source_local_id,
            "data_origin": patch.data_origin,
            "last_updated": now,
        }
        if patch.affiliate_url:
            source_defaults["affiliate_url"] = patch.affiliate_url
        if patch.price is not None:
            source_defaults["price"] = patch.price
        product_source, _ = ProductSource.objects.update_or_create(
            product=product,
            source=source,
            defaults=source_defaults,
        )

        result = UpsertResult(product=product, product_source=product_source, created=created)
        result.images_added = self._merge_images(product, source, patch)
        result.videos_added = self._merge_videos(product, source, patch.sample_video_urls)
        result.performers_linked = self._link_performers(product, performers)
        result.categories_linked = self._link_categories(product, patch.genre_names)

        action = "Created" if created else "Updated"
        logger.debug(
            f"{action} {product.normalized_id}: +{result.images_added} images, "
            f"+{result.videos_added} videos, +{result.performers_linked} performers"
        )
        return result

    def _merge_images(self, product: CanonicalProduct, source: CatalogSource, patch: ProductPatch) -> int:
        existing = set(product.images.values_list("url", flat=True))
        order = len(existing)

        candidates = []
        if patch.thumbnail_url:
            candidates.append((patch.thumbnail_url, ImageType.THUMBNAIL))
        candidates.extend((url, ImageType.SAMPLE) for url in patch.sample_image_urls)

        new_images = []
        for url, image_type in candidates:
            if not url or url in existing:
                continue
            existing.add(url)
            new_images.append(
                ProductImage(
                    product=product,
                    url=url,
                    image_type=image_type,
                    display_order=order,
                    source=source,
                )
            )
            order += 1

        if new_images:
            ProductImage.objects.bulk_create(new_images, ignore_conflicts=True)
        return len(new_images)

    def _merge_videos(self, product: CanonicalProduct, source: CatalogSource, urls: List[str]) -> int:
        existing = set(product.videos.values_list("url", flat=True))
        order = len(existing)

        new_videos = []
        for url in urls:
            if not url or url in existing:
                continue
            existing.add(url)
            new_videos.append(
                ProductVideo(product=product, url=url, display_order=order, source=source)
            )
            order += 1

        if new_videos:
            ProductVideo.objects.bulk_create(new_videos, ignore_conflicts=True)
        return len(new_videos)

    def _link_performers(self, product: CanonicalProduct, performers: List[PerformerName]) -> int:
        linked = 0
        for performer_name in performers:
            performer = self.resolve_performer(performer_name)
            _, created = ProductPerformer.objects.get_or_create(product=product, performer=performer)
            if created:
                linked += 1
        return linked

    def _link_categories(self, product: CanonicalProduct, names: List[str]) -> int:
        linked = 0
        for name in dict.fromkeys(n.strip() for n in names if n and n.strip()):
            category = self._get_or_create_category(name)
            _, created = ProductCategory.objects.get_or_create(product=product, category=category)
            if created:
                linked += 1
        return linked

    def _get_or_create_category(self, name: str) -> Category:
        category = Category.objects.filter(name=name).first()
        if category:
            return category
        try:
            with transaction.atomic():
                return Category.objects.create(name=name)
        except IntegrityError:
            return Category.objects.get(name=name)

    def resolve_performer(self, performer_name: PerformerName) -> Performer:
        """
        Find or create the Performer for a validated name.

        Lookup order: case-insensitive name, then alias, then creation.
        """
        key = Performer.make_key(performer_name.name)

        performer = Performer.objects.filter(name_key=key).first()
        if performer is None:
            alias = PerformerAlias.objects.select_related("performer").filter(alias_key=key).first()
            if alias:
                performer = alias.performer

        if performer is None:
            try:
                with transaction.atomic():
                    performer = Performer.objects.create(
                        name=performer_name.name,
                        reading=(performer_name.reading or "") if self.store_performer_details else "",
                    )
                logger.debug(f"Created performer {performer.name}")
            except IntegrityError:
                performer = Performer.objects.get(name_key=key)

        if self.store_performer_details:
            self._store_details(performer, performer_name)
        return performer

    def _store_details(self, performer: Performer, performer_name: PerformerName):
        if performer_name.reading and not performer.reading:
            performer.reading = performer_name.reading
            performer.save(update_fields=["reading", "name_key", "updated_at"])

        for alias in performer_name.aliases:
            alias_key = Performer.make_key(alias)
            if alias_key == performer.name_key:
                continue
            if Performer.objects.filter(name_key=alias_key).exists():
                continue
            try:
                with transaction.atomic():
                    PerformerAlias.objects.get_or_create(
                        alias_key=alias_key,
                        defaults={"performer": performer, "alias": alias},
                    )
            except IntegrityError:
                logger.debug(f"Alias {alias} already registered")

    def link_raw_response(self, product: CanonicalProduct, raw: RawResponse) -> ProductRawDataLink:
        """Record that a product was derived from a raw capture."""
        link, _ = ProductRawDataLink.objects.update_or_create(
            product=product,
            raw_response=raw,
            defaults={"content_hash": raw.content_hash, "updated_at": timezone.now()},
        )
        return link

    def record_sale(self, product_source: ProductSource, sale_info: Optional[SaleInfo]) -> Optional[SaleRecord]:
        """
        Upsert the sale for a listing, or deactivate it when no sale is present.

        Raises:
            ValidationRejected: If sale_price is not below regular_price
        """
        if sale_info is None:
            closed = SaleRecord.objects.filter(
                source=product_source.source,
                source_local_id=product_source.source_local_id,
                is_active=True,
            ).update(is_active=False)
            if closed:
                logger.info(f"Sale ended for {product_source.source.slug}:{product_source.source_local_id}")
            return None

        if sale_info.sale_price >= sale_info.regular_price:
            raise ValidationRejected(
                "sale_price",
                sale_info.sale_price,
                f"not below regular price {sale_info.regular_price}",
            )

        sale, _ = SaleRecord.objects.update_or_create(
            source=product_source.source,
            source_local_id=product_source.source_local_id,
            defaults={
                "product_source": product_source,
                "regular_price": sale_info.regular_price,
                "sale_price": sale_info.sale_price,
                "discount_percent": sale_info.discount_percent,
                "sale_type": sale_info.sale_type,
                "sale_name": sale_info.sale_name,
                "ends_at": sale_info.ends_at,
                "is_active": True,
                "fetched_at": timezone.now(),
            },
        )
        return sale

    @staticmethod
    def deactivate_expired_sales(now=None) -> int:
        """Mark sales whose end date has passed as inactive."""
        now = now or timezone.now()
        return SaleRecord.objects.filter(is_active=True, ends_at__lt=now).update(is_active=False)
