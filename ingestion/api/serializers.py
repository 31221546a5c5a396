"""
Plain dict renderings of canonical store rows for the read API.
"""

from typing import Any, Dict, Optional

from ingestion.models import (
    CanonicalProduct,
    CatalogSource,
    IngestionRun,
    Performer,
    SaleRecord,
)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def sale_to_dict(sale: SaleRecord) -> Dict[str, Any]:
    return {
        "source": sale.source.slug,
        "regular_price": sale.regular_price,
        "sale_price": sale.sale_price,
        "discount_percent": sale.discount_percent,
        "sale_type": sale.sale_type,
        "sale_name": sale.sale_name,
        "ends_at": _iso(sale.ends_at),
    }


def product_summary(product: CanonicalProduct) -> Dict[str, Any]:
    return {
        "id": product.id,
        "normalized_id": product.normalized_id,
        "title": product.title,
        "release_date": _iso(product.release_date),
        "duration_minutes": product.duration_minutes,
        "thumbnail_url": product.default_thumbnail_url or None,
        "sources": [ps.source.slug for ps in product.sources.all()],
        "performers": [p.name for p in product.performers.all()],
    }


def product_detail(product: CanonicalProduct) -> Dict[str, Any]:
    """Full product with listings, children and active sales."""
    data = product_summary(product)
    listings = list(product.sources.all())
    active_sales = SaleRecord.objects.filter(
        product_source__in=listings, is_active=True
    ).select_related("source")

    data.update(
        {
            "description": product.description,
            "sources": [
                {
                    "source": ps.source.slug,
                    "source_local_id": ps.source_local_id,
                    "affiliate_url": ps.affiliate_url,
                    "price": ps.price,
                    "data_origin": ps.data_origin,
                    "last_updated": _iso(ps.last_updated),
                }
                for ps in listings
            ],
            "images": [
                {"url": image.url, "type": image.image_type, "order": image.display_order}
                for image in product.images.all()
            ],
            "videos": [{"url": video.url, "order": video.display_order} for video in product.videos.all()],
            "performers": [{"id": p.id, "name": p.name, "reading": p.reading} for p in product.performers.all()],
            "categories": [{"name": c.name, "kind": c.kind} for c in product.categories.all()],
            "sales": [sale_to_dict(sale) for sale in active_sales],
            "created_at": _iso(product.created_at),
            "updated_at": _iso(product.updated_at),
        }
    )
    return data


def performer_to_dict(performer: Performer, with_products: bool = False) -> Dict[str, Any]:
    data = {
        "id": performer.id,
        "name": performer.name,
        "reading": performer.reading,
        "aliases": [a.alias for a in performer.aliases.all()],
    }
    if with_products:
        data["products"] = [product_summary(p) for p in performer.products.all()[:100]]
    return data


def run_to_dict(run: IngestionRun) -> Dict[str, Any]:
    data = {
        "id": str(run.id),
        "source": run.source.slug,
        "status": run.status,
        "options": run.options,
        "started_at": _iso(run.started_at),
        "completed_at": _iso(run.completed_at),
        "duration_seconds": run.duration_seconds,
        "error_message": run.error_message,
    }
    data["stats"] = {name: getattr(run, name) for name in IngestionRun.STAT_FIELDS}
    return data


def source_to_dict(source: CatalogSource, last_run: Optional[IngestionRun] = None) -> Dict[str, Any]:
    return {
        "slug": source.slug,
        "name": source.name,
        "kind": source.kind,
        "base_url": source.base_url,
        "is_active": source.is_active,
        "last_run_at": _iso(source.last_run_at),
        "next_run_at": _iso(source.next_run_at),
        "last_run_status": source.last_run_status,
        "last_run": run_to_dict(last_run) if last_run else None,
    }
