"""
Django models for the Catalog Ingestion service.

Models: CatalogSource, IngestionRun, RawResponse, CanonicalProduct,
        ProductSource, Performer, PerformerAlias, ProductPerformer,
        Category, ProductCategory, ProductImage, ProductVideo,
        ProductRawDataLink, SaleRecord

RawResponse is the verbatim capture log (one current row per source item).
CanonicalProduct is the merge target; it is only created or updated through
ingestion.services.resolver.Resolver.
"""

import hashlib
import uuid

from django.db import models
from django.utils import timezone


class SourceKind(models.TextChoices):
    """Transport used by a catalog source."""

    API = "api", "REST API"
    HTML = "html", "Scraped HTML"
    CSV = "csv", "CSV Dump"


class IngestionRunStatus(models.TextChoices):
    """Status of an ingestion run."""

    PENDING = "pending", "Pending"
    RUNNING = "running", "Running"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"


class RawContentType(models.TextChoices):
    """Format of a raw capture body."""

    HTML = "html", "HTML"
    JSON = "json", "JSON"
    CSV_ROW = "csv_row", "CSV Row"


class ImageType(models.TextChoices):
    """Role of a product image."""

    THUMBNAIL = "thumbnail", "Thumbnail"
    SAMPLE = "sample", "Sample"


class CategoryKind(models.TextChoices):
    """Kind of category/tag attached to products."""

    GENRE = "genre", "Genre"
    LABEL = "label", "Label"
    MAKER = "maker", "Maker"
    SERIES = "series", "Series"


class CatalogSource(models.Model):
    """
    One external catalog (an API vendor, a CSV feed or a scraped website).

    The slug is the stable source identifier used in canonical product ids.
    Rows are created by the seed_sources command and tuned via Django Admin.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=100, unique=True, help_text="Human-readable name")
    slug = models.SlugField(max_length=50, unique=True, help_text="Stable source identifier")
    kind = models.CharField(max_length=10, choices=SourceKind.choices)
    base_url = models.URLField(help_text="Base URL of the source")

    # Run Configuration
    is_active = models.BooleanField(default=True, help_text="Enable/disable ingestion")
    request_delay_seconds = models.FloatField(
        null=True, blank=True, help_text="Delay between items; falls back to INGEST_REQUEST_DELAY"
    )
    rate_limit_max_requests = models.IntegerField(
        null=True, blank=True, help_text="Sliding window size for API sources"
    )
    rate_limit_window_seconds = models.IntegerField(
        null=True, blank=True, help_text="Sliding window length in seconds"
    )
    default_cookies = models.JSONField(
        default=dict, blank=True, help_text="Cookies sent with every page fetch"
    )
    default_limit = models.IntegerField(default=100, help_text="Items per scheduled run")
    run_frequency_hours = models.IntegerField(default=24, help_text="How often to run (hours)")

    # Status Tracking
    last_run_at = models.DateTimeField(null=True, blank=True)
    next_run_at = models.DateTimeField(null=True, blank=True)
    last_run_status = models.CharField(max_length=20, blank=True)

    # Metadata
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)
    notes = models.TextField(blank=True, help_text="Internal notes")

    def save(self, *args, **kwargs):
        self.updated_at = timezone.now()
        super().save(*args, **kwargs)

    class Meta:
        db_table = "catalog_sources"
        ordering = ["name"]
        indexes = [
            models.Index(fields=["is_active", "next_run_at"], name="catalog_sou_is_acti_6a1f2e_idx"),
            models.Index(fields=["kind"], name="catalog_sou_kind_3b9c41_idx"),
        ]

    def __str__(self):
        return f"{self.name} ({self.kind})"

    def update_next_run_time(self, status: str = ""):
        """Stamp the last run and schedule the next one."""
        from datetime import timedelta

        now = timezone.now()
        self.last_run_at = now
        self.next_run_at = now + timedelta(hours=self.run_frequency_hours)
        self.last_run_status = status
        self.save(update_fields=["last_run_at", "next_run_at", "last_run_status", "updated_at"])

    def is_due_for_run(self) -> bool:
        """Check if source is due for an ingestion run."""
        if not self.is_active:
            return False
        if self.next_run_at is None:
            return True
        return timezone.now() >= self.next_run_at


class IngestionRun(models.Model):
    """
    One execution of a per-source ingestion batch.

    Holds the run options, the statistics summary and the external
    cancellation flag checked between items.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    source = models.ForeignKey(
        CatalogSource, on_delete=models.CASCADE, related_name="runs"
    )
    status = models.CharField(
        max_length=20, choices=IngestionRunStatus.choices, default=IngestionRunStatus.PENDING
    )
    options = models.JSONField(default=dict, blank=True)

    # Timing
    created_at = models.DateTimeField(default=timezone.now)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    # Statistics
    fetched = models.IntegerField(default=0)
    new_products = models.IntegerField(default=0)
    updated_products = models.IntegerField(default=0)
    skipped_unchanged = models.IntegerField(default=0)
    skipped_invalid = models.IntegerField(default=0)
    not_products = models.IntegerField(default=0)
    errors = models.IntegerField(default=0)
    raw_saved = models.IntegerField(default=0)
    sales_saved = models.IntegerField(default=0)

    # Control
    cancel_requested = models.BooleanField(default=False)
    error_message = models.TextField(blank=True)

    STAT_FIELDS = [
        "fetched",
        "new_products",
        "updated_products",
        "skipped_unchanged",
        "skipped_invalid",
        "not_products",
        "errors",
        "raw_saved",
        "sales_saved",
    ]

    class Meta:
        db_table = "ingestion_runs"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="ingestion_r_status_8d2e07_idx"),
            models.Index(fields=["source", "created_at"], name="ingestion_r_source__51c0aa_idx"),
        ]

    def __str__(self):
        return f"Run {self.id} - {self.source.slug} ({self.status})"

    @property
    def duration_seconds(self):
        """Calculate run duration."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def start(self):
        """Mark run as started."""
        self.status = IngestionRunStatus.RUNNING
        self.started_at = timezone.now()
        self.save(update_fields=["status", "started_at"])

    def complete(self, stats: dict, status: str = IngestionRunStatus.COMPLETED, error_message: str = ""):
        """Store final statistics and close the run."""
        for field in self.STAT_FIELDS:
            setattr(self, field, stats.get(field, 0))
        self.status = status
        self.completed_at = timezone.now()
        if error_message:
            self.error_message = error_message
        self.save(update_fields=self.STAT_FIELDS + ["status", "completed_at", "error_message"])
        self.source.update_next_run_time(status=status)

    def request_cancel(self):
        """Ask a running batch to stop before its next item."""
        self.cancel_requested = True
        self.save(update_fields=["cancel_requested"])

    def is_cancel_requested(self) -> bool:
        """Re-read the cancellation flag from the database."""
        self.refresh_from_db(fields=["cancel_requested"])
        return self.cancel_requested


class RawResponse(models.Model):
    """
    Verbatim capture of the latest fetch for one (source, source-local id).

    A fetch with an identical content hash only refreshes fetched_at.
    A changed hash rewrites the body in place and clears processed_at.
    Rows are never deleted; they serve as the replay and audit log.
    """

    source = models.ForeignKey(
        CatalogSource, on_delete=models.PROTECT, related_name="raw_responses"
    )
    source_local_id = models.CharField(max_length=200)
    url = models.URLField(max_length=2000, blank=True)
    content_type = models.CharField(
        max_length=10, choices=RawContentType.choices, default=RawContentType.HTML
    )

    # Content
    content_hash = models.CharField(max_length=64, db_index=True)
    body = models.TextField(null=True, blank=True, help_text="Inline body, empty when stored as blob")
    blob_name = models.CharField(
        max_length=500, blank=True, help_text="Storage name of the body in the blob store"
    )
    body_size = models.IntegerField(default=0)

    # Timing
    first_fetched_at = models.DateTimeField(default=timezone.now)
    fetched_at = models.DateTimeField(default=timezone.now)
    processed_at = models.DateTimeField(null=True, blank=True)
    fetch_count = models.IntegerField(default=1)

    class Meta:
        db_table = "raw_responses"
        constraints = [
            models.UniqueConstraint(
                fields=["source", "source_local_id"],
                name="uniq_raw_response_source_item",
            ),
        ]
        indexes = [
            models.Index(fields=["source", "processed_at"], name="raw_respons_source__0f7b3d_idx"),
        ]

    def __str__(self):
        return f"{self.source.slug}:{self.source_local_id} ({self.content_hash[:12]})"

    @staticmethod
    def compute_content_hash(content: str) -> str:
        """Compute SHA-256 hash of content."""
        return hashlib.sha256(content.encode("utf-8")).hexdigest()

    @property
    def is_processed(self) -> bool:
        return self.processed_at is not None

    @property
    def has_blob(self) -> bool:
        return bool(self.blob_name)


class Performer(models.Model):
    """
    Canonical person entity shared across sources.

    name_key is the case-folded name and carries the uniqueness guarantee.
    """

    name = models.CharField(max_length=100)
    name_key = models.CharField(max_length=100, unique=True)
    reading = models.CharField(max_length=100, blank=True, help_text="Phonetic reading")

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "performers"
        ordering = ["name"]

    def __str__(self):
        return self.name

    @staticmethod
    def make_key(name: str) -> str:
        return name.strip().casefold()

    def save(self, *args, **kwargs):
        self.name_key = self.make_key(self.name)
        self.updated_at = timezone.now()
        super().save(*args, **kwargs)


class PerformerAlias(models.Model):
    """Alternative name resolving to a Performer."""

    performer = models.ForeignKey(Performer, on_delete=models.CASCADE, related_name="aliases")
    alias = models.CharField(max_length=100)
    alias_key = models.CharField(max_length=100, unique=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "performer_aliases"
        ordering = ["alias"]

    def __str__(self):
        return f"{self.alias} -> {self.performer}"

    def save(self, *args, **kwargs):
        self.alias_key = Performer.make_key(self.alias)
        super().save(*args, **kwargs)


class Category(models.Model):
    """Genre, label or other tag attached to products."""

    name = models.CharField(max_length=100, unique=True)
    kind = models.CharField(max_length=10, choices=CategoryKind.choices, default=CategoryKind.GENRE)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "categories"
        ordering = ["name"]
        verbose_name_plural = "Categories"

    def __str__(self):
        return self.name


class CanonicalProduct(models.Model):
    """
    One row per distinct real-world item; the merge target across sources.

    normalized_id is derived from (source slug, source-local id) and is
    stable across re-ingestion.
    """

    normalized_id = models.CharField(max_length=255, unique=True)
    title = models.CharField(max_length=500)
    description = models.TextField(blank=True)
    release_date = models.DateField(null=True, blank=True)
    duration_minutes = models.PositiveIntegerField(null=True, blank=True)
    default_thumbnail_url = models.URLField(max_length=1000, blank=True)

    performers = models.ManyToManyField(
        Performer, through="ProductPerformer", related_name="products"
    )
    categories = models.ManyToManyField(
        Category, through="ProductCategory", related_name="products"
    )

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "canonical_products"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["release_date"], name="canonical_p_release_2c7e95_idx"),
        ]

    def __str__(self):
        return f"{self.normalized_id}: {self.title[:50]}"


class ProductSource(models.Model):
    """
    Per-source listing of a canonical product.

    A (product, source) pair is unique; re-ingestion updates it in place.
    """

    product = models.ForeignKey(
        CanonicalProduct, on_delete=models.CASCADE, related_name="sources"
    )
    source = models.ForeignKey(
        CatalogSource, on_delete=models.PROTECT, related_name="product_sources"
    )
    source_local_id = models.CharField(max_length=200)
    affiliate_url = models.URLField(max_length=1000, blank=True)
    price = models.PositiveIntegerField(null=True, blank=True)
    data_origin = models.CharField(max_length=10, choices=SourceKind.choices)

    first_seen_at = models.DateTimeField(default=timezone.now)
    last_updated = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "product_sources"
        constraints = [
            models.UniqueConstraint(fields=["product", "source"], name="uniq_product_source"),
            models.UniqueConstraint(
                fields=["source", "source_local_id"], name="uniq_product_source_item"
            ),
        ]

    def __str__(self):
        return f"{self.product.normalized_id} <- {self.source.slug}"


class ProductPerformer(models.Model):
    """Link between a product and a performer."""

    product = models.ForeignKey(CanonicalProduct, on_delete=models.CASCADE)
    performer = models.ForeignKey(Performer, on_delete=models.CASCADE)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "product_performers"
        constraints = [
            models.UniqueConstraint(fields=["product", "performer"], name="uniq_product_performer"),
        ]


class ProductCategory(models.Model):
    """Link between a product and a category."""

    product = models.ForeignKey(CanonicalProduct, on_delete=models.CASCADE)
    category = models.ForeignKey(Category, on_delete=models.CASCADE)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "product_categories"
        constraints = [
            models.UniqueConstraint(fields=["product", "category"], name="uniq_product_category"),
        ]


class ProductImage(models.Model):
    """Thumbnail or sample image of a product."""

    product = models.ForeignKey(
        CanonicalProduct, on_delete=models.CASCADE, related_name="images"
    )
    url = models.URLField(max_length=1000)
    image_type = models.CharField(max_length=20, choices=ImageType.choices)
    display_order = models.IntegerField(default=0)
    source = models.ForeignKey(
        CatalogSource, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "product_images"
        ordering = ["display_order"]
        constraints = [
            models.UniqueConstraint(fields=["product", "url"], name="uniq_product_image_url"),
        ]

    def __str__(self):
        return f"{self.product.normalized_id} - {self.image_type} #{self.display_order}"


class ProductVideo(models.Model):
    """Sample video of a product."""

    product = models.ForeignKey(
        CanonicalProduct, on_delete=models.CASCADE, related_name="videos"
    )
    url = models.URLField(max_length=1000)
    video_type = models.CharField(max_length=20, default="sample")
    display_order = models.IntegerField(default=0)
    source = models.ForeignKey(
        CatalogSource, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "product_videos"
        ordering = ["display_order"]
        constraints = [
            models.UniqueConstraint(fields=["product", "url"], name="uniq_product_video_url"),
        ]

    def __str__(self):
        return f"{self.product.normalized_id} - video #{self.display_order}"


class ProductRawDataLink(models.Model):
    """
    Traceability link from a canonical product to the raw capture it was
    derived from. Allows re-deriving products from stored captures.
    """

    product = models.ForeignKey(
        CanonicalProduct, on_delete=models.CASCADE, related_name="raw_links"
    )
    raw_response = models.ForeignKey(
        RawResponse, on_delete=models.CASCADE, related_name="product_links"
    )
    content_hash = models.CharField(max_length=64)
    linked_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "product_raw_data_links"
        constraints = [
            models.UniqueConstraint(
                fields=["product", "raw_response"], name="uniq_product_raw_link"
            ),
        ]

    def __str__(self):
        return f"{self.product.normalized_id} <- raw {self.raw_response_id}"


class SaleRecord(models.Model):
    """
    Current sale state for one (source, source-local id).

    sale_price is always lower than regular_price; the resolver refuses
    to write anything else.
    """

    source = models.ForeignKey(CatalogSource, on_delete=models.CASCADE, related_name="sales")
    source_local_id = models.CharField(max_length=200)
    product_source = models.ForeignKey(
        ProductSource, on_delete=models.SET_NULL, null=True, blank=True, related_name="sales"
    )
    regular_price = models.PositiveIntegerField()
    sale_price = models.PositiveIntegerField()
    discount_percent = models.PositiveSmallIntegerField()
    sale_type = models.CharField(max_length=30, blank=True)
    sale_name = models.CharField(max_length=200, blank=True)
    ends_at = models.DateTimeField(null=True, blank=True)
    is_active = models.BooleanField(default=True)

    fetched_at = models.DateTimeField(default=timezone.now)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "sale_records"
        constraints = [
            models.UniqueConstraint(fields=["source", "source_local_id"], name="uniq_sale_source_item"),
        ]
        indexes = [
            models.Index(fields=["is_active", "ends_at"], name="sale_record_is_acti_9e4b12_idx"),
        ]

    def __str__(self):
        return f"{self.source.slug}:{self.source_local_id} {self.regular_price}->{self.sale_price}"

    def is_expired(self, now=None) -> bool:
        now = now or timezone.now()
        return self.ends_at is not None and self.ends_at < now
