"""
Django admin configuration for the ingestion models.

Sources are managed here (activation, delays, cookies, schedule); runs,
raw captures and canonical products are read-mostly views.
"""

from django.contrib import admin
from django.utils import timezone
from django.utils.html import format_html

from ingestion.models import (
    CanonicalProduct,
    CatalogSource,
    Category,
    IngestionRun,
    IngestionRunStatus,
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
from ingestion.tasks import ingest_source

STATUS_COLORS = {
    IngestionRunStatus.COMPLETED: "#28a745",
    IngestionRunStatus.FAILED: "#dc3545",
    IngestionRunStatus.RUNNING: "#007bff",
    IngestionRunStatus.PENDING: "#ffc107",
    IngestionRunStatus.CANCELLED: "#6c757d",
}


def _badge(color: str, text: str):
    return format_html(
        '<span style="background-color: {}; color: white; '
        'padding: 2px 8px; border-radius: 4px;">{}</span>',
        color, text
    )


@admin.register(CatalogSource)
class CatalogSourceAdmin(admin.ModelAdmin):
    """Source management with run actions."""

    list_display = [
        "name",
        "slug",
        "kind",
        "is_active_badge",
        "request_delay_seconds",
        "last_run_at",
        "last_run_status_badge",
    ]
    list_filter = ["is_active", "kind"]
    search_fields = ["name", "slug", "base_url"]
    readonly_fields = ["id", "last_run_at", "next_run_at", "last_run_status", "created_at", "updated_at"]
    ordering = ["name"]

    fieldsets = (
        ("Identity", {
            "fields": ("id", "name", "slug", "kind", "base_url"),
        }),
        ("Run Configuration", {
            "fields": (
                "is_active",
                "default_limit",
                "run_frequency_hours",
                "request_delay_seconds",
                "rate_limit_max_requests",
                "rate_limit_window_seconds",
                "default_cookies",
            ),
        }),
        ("Status", {
            "fields": ("last_run_at", "next_run_at", "last_run_status"),
        }),
        ("Metadata", {
            "fields": ("notes", "created_at", "updated_at"),
            "classes": ("collapse",),
        }),
    )

    actions = ["run_now", "enable_sources", "disable_sources", "reset_schedule"]

    def is_active_badge(self, obj):
        if obj.is_active:
            return _badge("#28a745", "Active")
        return _badge("#6c757d", "Inactive")
    is_active_badge.short_description = "Active"
    is_active_badge.admin_order_field = "is_active"

    def last_run_status_badge(self, obj):
        if not obj.last_run_status:
            return _badge("#6c757d", "Never")
        return _badge(STATUS_COLORS.get(obj.last_run_status, "#6c757d"), obj.last_run_status)
    last_run_status_badge.short_description = "Last Run"

    @admin.action(description="Run ingestion now")
    def run_now(self, request, queryset):
        count = 0
        for source in queryset.filter(is_active=True):
            ingest_source.apply_async(args=[source.slug], kwargs={"limit": source.default_limit}, queue="ingest")
            count += 1
        self.message_user(request, f"Dispatched ingestion for {count} source(s).")

    @admin.action(description="Disable selected sources")
    def disable_sources(self, request, queryset):
        count = queryset.update(is_active=False)
        self.message_user(request, f"Disabled {count} source(s).")

    @admin.action(description="Enable selected sources")
    def enable_sources(self, request, queryset):
        count = queryset.update(is_active=True)
        self.message_user(request, f"Enabled {count} source(s).")

    @admin.action(description="Reset schedule (run ASAP)")
    def reset_schedule(self, request, queryset):
        count = queryset.update(next_run_at=timezone.now())
        self.message_user(request, f"Reset schedule for {count} source(s).")


@admin.register(IngestionRun)
class IngestionRunAdmin(admin.ModelAdmin):
    """Read-only view of run status and statistics."""

    list_display = [
        "id_short",
        "source",
        "status_badge",
        "created_at",
        "duration_display",
        "fetched",
        "new_products",
        "updated_products",
        "skipped_unchanged",
        "errors",
    ]
    list_filter = ["status", "source"]
    readonly_fields = [f.name for f in IngestionRun._meta.fields if f.name != "cancel_requested"]
    ordering = ["-created_at"]
    actions = ["cancel_runs"]

    def id_short(self, obj):
        return str(obj.id)[:8]
    id_short.short_description = "ID"

    def status_badge(self, obj):
        return _badge(STATUS_COLORS.get(obj.status, "#6c757d"), obj.get_status_display())
    status_badge.short_description = "Status"

    def duration_display(self, obj):
        seconds = obj.duration_seconds
        if seconds is None:
            return "-"
        if seconds < 60:
            return f"{seconds:.0f}s"
        return f"{seconds / 60:.1f}m"
    duration_display.short_description = "Duration"

    @admin.action(description="Request cancellation")
    def cancel_runs(self, request, queryset):
        count = queryset.filter(status=IngestionRunStatus.RUNNING).update(cancel_requested=True)
        self.message_user(request, f"Cancellation requested for {count} run(s).")

    def has_add_permission(self, request):
        return False


@admin.register(RawResponse)
class RawResponseAdmin(admin.ModelAdmin):
    list_display = ["source", "source_local_id", "content_type", "hash_short", "body_size", "fetched_at", "processed_at"]
    list_filter = ["source", "content_type"]
    search_fields = ["source_local_id", "url", "content_hash"]
    readonly_fields = [f.name for f in RawResponse._meta.fields]

    def hash_short(self, obj):
        return obj.content_hash[:12]
    hash_short.short_description = "Hash"

    def has_add_permission(self, request):
        return False


class ProductSourceInline(admin.TabularInline):
    model = ProductSource
    extra = 0
    readonly_fields = ["source", "source_local_id", "affiliate_url", "price", "data_origin", "last_updated"]


class ProductImageInline(admin.TabularInline):
    model = ProductImage
    extra = 0


class ProductVideoInline(admin.TabularInline):
    model = ProductVideo
    extra = 0


class ProductPerformerInline(admin.TabularInline):
    model = ProductPerformer
    extra = 0
    autocomplete_fields = ["performer"]


class ProductCategoryInline(admin.TabularInline):
    model = ProductCategory
    extra = 0


@admin.register(CanonicalProduct)
class CanonicalProductAdmin(admin.ModelAdmin):
    list_display = ["normalized_id", "title", "release_date", "duration_minutes", "created_at"]
    search_fields = ["normalized_id", "title"]
    list_filter = ["sources__source"]
    readonly_fields = ["normalized_id", "created_at", "updated_at"]
    inlines = [
        ProductSourceInline,
        ProductPerformerInline,
        ProductCategoryInline,
        ProductImageInline,
        ProductVideoInline,
    ]


class PerformerAliasInline(admin.TabularInline):
    model = PerformerAlias
    extra = 0
    readonly_fields = ["alias_key"]


@admin.register(Performer)
class PerformerAdmin(admin.ModelAdmin):
    list_display = ["name", "reading", "created_at"]
    search_fields = ["name", "reading", "aliases__alias"]
    readonly_fields = ["name_key", "created_at", "updated_at"]
    inlines = [PerformerAliasInline]


@admin.register(PerformerAlias)
class PerformerAliasAdmin(admin.ModelAdmin):
    list_display = ["alias", "performer"]
    search_fields = ["alias", "performer__name"]
    readonly_fields = ["alias_key"]


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ["name", "kind"]
    list_filter = ["kind"]
    search_fields = ["name"]


@admin.register(ProductSource)
class ProductSourceAdmin(admin.ModelAdmin):
    list_display = ["product", "source", "source_local_id", "price", "last_updated"]
    list_filter = ["source", "data_origin"]
    search_fields = ["source_local_id", "product__title"]


@admin.register(ProductImage)
class ProductImageAdmin(admin.ModelAdmin):
    list_display = ["product", "image_type", "display_order", "source"]
    list_filter = ["image_type", "source"]


@admin.register(ProductVideo)
class ProductVideoAdmin(admin.ModelAdmin):
    list_display = ["product", "video_type", "display_order", "source"]
    list_filter = ["source"]


@admin.register(ProductPerformer)
class ProductPerformerAdmin(admin.ModelAdmin):
    list_display = ["product", "performer", "created_at"]


@admin.register(ProductCategory)
class ProductCategoryAdmin(admin.ModelAdmin):
    list_display = ["product", "category", "created_at"]


@admin.register(ProductRawDataLink)
class ProductRawDataLinkAdmin(admin.ModelAdmin):
    list_display = ["product", "raw_response", "content_hash", "updated_at"]
    readonly_fields = ["product", "raw_response", "content_hash", "linked_at", "updated_at"]


@admin.register(SaleRecord)
class SaleRecordAdmin(admin.ModelAdmin):
    list_display = [
        "source",
        "source_local_id",
        "regular_price",
        "sale_price",
        "discount_percent",
        "ends_at",
        "is_active",
    ]
    list_filter = ["is_active", "source", "sale_type"]
    search_fields = ["source_local_id", "sale_name"]
