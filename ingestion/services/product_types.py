"""
Data types passed between parsers, clients and the resolver.

- IntermediateProduct: common schema every client/parser produces
- SaleInfo: regular/sale price pair derived from a listing
- ProductIdentity: (source, source-local id) and its canonical id
- PerformerName: validated display name with optional reading and aliases
- ProductPatch: mutable fields and children applied by Resolver.upsert
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional


@dataclass
class SaleInfo:
    """
    A price reduction observed on a listing.

    sale_price is always strictly lower than regular_price; use
    ingestion.services.pricing.build_sale_info to construct one safely.
    """

    regular_price: int
    sale_price: int
    discount_percent: int
    sale_type: str = "sale"
    sale_name: str = ""
    ends_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "regular_price": self.regular_price,
            "sale_price": self.sale_price,
            "discount_percent": self.discount_percent,
            "sale_type": self.sale_type,
            "sale_name": self.sale_name,
            "ends_at": self.ends_at.isoformat() if self.ends_at else None,
        }


@dataclass
class IntermediateProduct:
    """
    Source-independent product record.

    Optional fields stay None (or empty) when the source does not provide
    them; clients and parsers never invent values.
    """

    source_id: str
    source_local_id: str
    title: str
    affiliate_url: str = ""
    url: str = ""
    description: Optional[str] = None
    release_date: Optional[date] = None
    duration_minutes: Optional[int] = None
    thumbnail_url: Optional[str] = None
    sample_image_urls: List[str] = field(default_factory=list)
    sample_video_urls: List[str] = field(default_factory=list)
    price: Optional[int] = None
    sale_info: Optional[SaleInfo] = None
    performer_names: List[str] = field(default_factory=list)
    genre_names: List[str] = field(default_factory=list)

    # Raw payload for API/CSV records, stored as the raw capture
    raw_data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dict (used by the management commands)."""
        return {
            "source_id": self.source_id,
            "source_local_id": self.source_local_id,
            "title": self.title,
            "affiliate_url": self.affiliate_url,
            "url": self.url,
            "description": self.description,
            "release_date": self.release_date.isoformat() if self.release_date else None,
            "duration_minutes": self.duration_minutes,
            "thumbnail_url": self.thumbnail_url,
            "sample_image_urls": self.sample_image_urls,
            "sample_video_urls": self.sample_video_urls,
            "price": self.price,
            "sale_info": self.sale_info.to_dict() if self.sale_info else None,
            "performer_names": self.performer_names,
            "genre_names": self.genre_names,
        }


@dataclass(frozen=True)
class ProductIdentity:
    """Stable identity of a product as seen by one source."""

    source: str
    source_local_id: str

    @property
    def normalized_id(self) -> str:
        """Canonical identifier, identical across re-ingestion of the same item."""
        return f"{self.source.strip()}-{self.source_local_id.strip()}".lower()

    @classmethod
    def from_product(cls, product: IntermediateProduct) -> "ProductIdentity":
        return cls(source=product.source_id, source_local_id=product.source_local_id)


@dataclass
class PerformerName:
    """A performer name that passed validation."""

    name: str
    reading: Optional[str] = None
    aliases: List[str] = field(default_factory=list)


@dataclass
class ProductPatch:
    """
    Values written by Resolver.upsert.

    Scalar fields left as None do not overwrite stored values. List fields
    are reconciled additively against existing children.
    """

    title: str
    description: Optional[str] = None
    release_date: Optional[date] = None
    duration_minutes: Optional[int] = None
    thumbnail_url: Optional[str] = None
    sample_image_urls: List[str] = field(default_factory=list)
    sample_video_urls: List[str] = field(default_factory=list)
    price: Optional[int] = None
    affiliate_url: str = ""
    data_origin: str = "html"
    genre_names: List[str] = field(default_factory=list)

    @classmethod
    def from_intermediate(cls, product: IntermediateProduct, data_origin: str) -> "ProductPatch":
        return cls(
            title=product.title,
            description=product.description,
            release_date=product.release_date,
            duration_minutes=product.duration_minutes,
            thumbnail_url=product.thumbnail_url,
            sample_image_urls=list(product.sample_image_urls),
            sample_video_urls=list(product.sample_video_urls),
            price=product.price,
            affiliate_url=product.affiliate_url,
            data_origin=data_origin,
            genre_names=list(product.genre_names),
        )
