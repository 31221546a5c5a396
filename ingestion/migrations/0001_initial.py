"""
Migration: Initial ingestion schema.

Creates sources, runs, raw captures, the canonical product store with its
children, and sale records.
"""

import uuid
from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone


SOURCE_KIND_CHOICES = [("api", "REST API"), ("html", "Scraped HTML"), ("csv", "CSV Dump")]


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="CatalogSource",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(help_text="Human-readable name", max_length=100, unique=True)),
                ("slug", models.SlugField(help_text="Stable source identifier", unique=True)),
                ("kind", models.CharField(choices=SOURCE_KIND_CHOICES, max_length=10)),
                ("base_url", models.URLField(help_text="Base URL of the source")),
                ("is_active", models.BooleanField(default=True, help_text="Enable/disable ingestion")),
                (
                    "request_delay_seconds",
                    models.FloatField(
                        blank=True, null=True, help_text="Delay between items; falls back to INGEST_REQUEST_DELAY"
                    ),
                ),
                (
                    "rate_limit_max_requests",
                    models.IntegerField(blank=True, null=True, help_text="Sliding window size for API sources"),
                ),
                (
                    "rate_limit_window_seconds",
                    models.IntegerField(blank=True, null=True, help_text="Sliding window length in seconds"),
                ),
                (
                    "default_cookies",
                    models.JSONField(blank=True, default=dict, help_text="Cookies sent with every page fetch"),
                ),
                ("default_limit", models.IntegerField(default=100, help_text="Items per scheduled run")),
                ("run_frequency_hours", models.IntegerField(default=24, help_text="How often to run (hours)")),
                ("last_run_at", models.DateTimeField(blank=True, null=True)),
                ("next_run_at", models.DateTimeField(blank=True, null=True)),
                ("last_run_status", models.CharField(blank=True, max_length=20)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("notes", models.TextField(blank=True, help_text="Internal notes")),
            ],
            options={
                "db_table": "catalog_sources",
                "ordering": ["name"],
            },
        ),
        migrations.AddIndex(
            model_name="catalogsource",
            index=models.Index(fields=["is_active", "next_run_at"], name="catalog_sou_is_acti_6a1f2e_idx"),
        ),
        migrations.AddIndex(
            model_name="catalogsource",
            index=models.Index(fields=["kind"], name="catalog_sou_kind_3b9c41_idx"),
        ),
        migrations.CreateModel(
            name="IngestionRun",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("running", "Running"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("options", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("fetched", models.IntegerField(default=0)),
                ("new_products", models.IntegerField(default=0)),
                ("updated_products", models.IntegerField(default=0)),
                ("skipped_unchanged", models.IntegerField(default=0)),
                ("skipped_invalid", models.IntegerField(default=0)),
                ("not_products", models.IntegerField(default=0)),
                ("errors", models.IntegerField(default=0)),
                ("raw_saved", models.IntegerField(default=0)),
                ("sales_saved", models.IntegerField(default=0)),
                ("cancel_requested", models.BooleanField(default=False)),
                ("error_message", models.TextField(blank=True)),
                (
                    "source",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="runs",
                        to="ingestion.catalogsource",
                    ),
                ),
            ],
            options={
                "db_table": "ingestion_runs",
                "ordering": ["-created_at"],
            },
        ),
        migrations.AddIndex(
            model_name="ingestionrun",
            index=models.Index(fields=["status", "created_at"], name="ingestion_r_status_8d2e07_idx"),
        ),
        migrations.AddIndex(
            model_name="ingestionrun",
            index=models.Index(fields=["source", "created_at"], name="ingestion_r_source__51c0aa_idx"),
        ),
        migrations.CreateModel(
            name="RawResponse",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("source_local_id", models.CharField(max_length=200)),
                ("url", models.URLField(blank=True, max_length=2000)),
                (
                    "content_type",
                    models.CharField(
                        choices=[("html", "HTML"), ("json", "JSON"), ("csv_row", "CSV Row")],
                        default="html",
                        max_length=10,
                    ),
                ),
                ("content_hash", models.CharField(db_index=True, max_length=64)),
                (
                    "body",
                    models.TextField(blank=True, null=True, help_text="Inline body, empty when stored as blob"),
                ),
                (
                    "blob_name",
                    models.CharField(
                        blank=True, max_length=500, help_text="Storage name of the body in the blob store"
                    ),
                ),
                ("body_size", models.IntegerField(default=0)),
                ("first_fetched_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("fetched_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("fetch_count", models.IntegerField(default=1)),
                (
                    "source",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="raw_responses",
                        to="ingestion.catalogsource",
                    ),
                ),
            ],
            options={
                "db_table": "raw_responses",
            },
        ),
        migrations.AddConstraint(
            model_name="rawresponse",
            constraint=models.UniqueConstraint(
                fields=("source", "source_local_id"), name="uniq_raw_response_source_item"
            ),
        ),
        migrations.AddIndex(
            model_name="rawresponse",
            index=models.Index(fields=["source", "processed_at"], name="raw_respons_source__0f7b3d_idx"),
        ),
        migrations.CreateModel(
            name="Performer",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=100)),
                ("name_key", models.CharField(max_length=100, unique=True)),
                ("reading", models.CharField(blank=True, help_text="Phonetic reading", max_length=100)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "db_table": "performers",
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="PerformerAlias",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("alias", models.CharField(max_length=100)),
                ("alias_key", models.CharField(max_length=100, unique=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "performer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="aliases",
                        to="ingestion.performer",
                    ),
                ),
            ],
            options={
                "db_table": "performer_aliases",
                "ordering": ["alias"],
            },
        ),
        migrations.CreateModel(
            name="Category",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=100, unique=True)),
                (
                    "kind",
                    models.CharField(
                        choices=[("genre", "Genre"), ("label", "Label"), ("maker", "Maker"), ("series", "Series")],
                        default="genre",
                        max_length=10,
                    ),
                ),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "db_table": "categories",
                "ordering": ["name"],
                "verbose_name_plural": "Categories",
            },
        ),
        migrations.CreateModel(
            name="CanonicalProduct",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("normalized_id", models.CharField(max_length=255, unique=True)),
                ("title", models.CharField(max_length=500)),
                ("description", models.TextField(blank=True)),
                ("release_date", models.DateField(blank=True, null=True)),
                ("duration_minutes", models.PositiveIntegerField(blank=True, null=True)),
                ("default_thumbnail_url", models.URLField(blank=True, max_length=1000)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "db_table": "canonical_products",
                "ordering": ["-created_at"],
            },
        ),
        migrations.AddIndex(
            model_name="canonicalproduct",
            index=models.Index(fields=["release_date"], name="canonical_p_release_2c7e95_idx"),
        ),
        migrations.CreateModel(
            name="ProductSource",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("source_local_id", models.CharField(max_length=200)),
                ("affiliate_url", models.URLField(blank=True, max_length=1000)),
                ("price", models.PositiveIntegerField(blank=True, null=True)),
                ("data_origin", models.CharField(choices=SOURCE_KIND_CHOICES, max_length=10)),
                ("first_seen_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("last_updated", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="sources",
                        to="ingestion.canonicalproduct",
                    ),
                ),
                (
                    "source",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="product_sources",
                        to="ingestion.catalogsource",
                    ),
                ),
            ],
            options={
                "db_table": "product_sources",
            },
        ),
        migrations.AddConstraint(
            model_name="productsource",
            constraint=models.UniqueConstraint(fields=("product", "source"), name="uniq_product_source"),
        ),
        migrations.AddConstraint(
            model_name="productsource",
            constraint=models.UniqueConstraint(fields=("source", "source_local_id"), name="uniq_product_source_item"),
        ),
        migrations.CreateModel(
            name="ProductPerformer",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, to="ingestion.canonicalproduct"
                    ),
                ),
                (
                    "performer",
                    models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, to="ingestion.performer"),
                ),
            ],
            options={
                "db_table": "product_performers",
            },
        ),
        migrations.AddConstraint(
            model_name="productperformer",
            constraint=models.UniqueConstraint(fields=("product", "performer"), name="uniq_product_performer"),
        ),
        migrations.CreateModel(
            name="ProductCategory",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, to="ingestion.canonicalproduct"
                    ),
                ),
                (
                    "category",
                    models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, to="ingestion.category"),
                ),
            ],
            options={
                "db_table": "product_categories",
            },
        ),
        migrations.AddConstraint(
            model_name="productcategory",
            constraint=models.UniqueConstraint(fields=("product", "category"), name="uniq_product_category"),
        ),
        migrations.AddField(
            model_name="canonicalproduct",
            name="performers",
            field=models.ManyToManyField(
                related_name="products", through="ingestion.ProductPerformer", to="ingestion.performer"
            ),
        ),
        migrations.AddField(
            model_name="canonicalproduct",
            name="categories",
            field=models.ManyToManyField(
                related_name="products", through="ingestion.ProductCategory", to="ingestion.category"
            ),
        ),
        migrations.CreateModel(
            name="ProductImage",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("url", models.URLField(max_length=1000)),
                (
                    "image_type",
                    models.CharField(choices=[("thumbnail", "Thumbnail"), ("sample", "Sample")], max_length=20),
                ),
                ("display_order", models.IntegerField(default=0)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="images",
                        to="ingestion.canonicalproduct",
                    ),
                ),
                (
                    "source",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="ingestion.catalogsource",
                    ),
                ),
            ],
            options={
                "db_table": "product_images",
                "ordering": ["display_order"],
            },
        ),
        migrations.AddConstraint(
            model_name="productimage",
            constraint=models.UniqueConstraint(fields=("product", "url"), name="uniq_product_image_url"),
        ),
        migrations.CreateModel(
            name="ProductVideo",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("url", models.URLField(max_length=1000)),
                ("video_type", models.CharField(default="sample", max_length=20)),
                ("display_order", models.IntegerField(default=0)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="videos",
                        to="ingestion.canonicalproduct",
                    ),
                ),
                (
                    "source",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="ingestion.catalogsource",
                    ),
                ),
            ],
            options={
                "db_table": "product_videos",
                "ordering": ["display_order"],
            },
        ),
        migrations.AddConstraint(
            model_name="productvideo",
            constraint=models.UniqueConstraint(fields=("product", "url"), name="uniq_product_video_url"),
        ),
        migrations.CreateModel(
            name="ProductRawDataLink",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("content_hash", models.CharField(max_length=64)),
                ("linked_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="raw_links",
                        to="ingestion.canonicalproduct",
                    ),
                ),
                (
                    "raw_response",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="product_links",
                        to="ingestion.rawresponse",
                    ),
                ),
            ],
            options={
                "db_table": "product_raw_data_links",
            },
        ),
        migrations.AddConstraint(
            model_name="productrawdatalink",
            constraint=models.UniqueConstraint(fields=("product", "raw_response"), name="uniq_product_raw_link"),
        ),
        migrations.CreateModel(
            name="SaleRecord",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("source_local_id", models.CharField(max_length=200)),
                ("regular_price", models.PositiveIntegerField()),
                ("sale_price", models.PositiveIntegerField()),
                ("discount_percent", models.PositiveSmallIntegerField()),
                ("sale_type", models.CharField(blank=True, max_length=30)),
                ("sale_name", models.CharField(blank=True, max_length=200)),
                ("ends_at", models.DateTimeField(blank=True, null=True)),
                ("is_active", models.BooleanField(default=True)),
                ("fetched_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "source",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="sales",
                        to="ingestion.catalogsource",
                    ),
                ),
                (
                    "product_source",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="sales",
                        to="ingestion.productsource",
                    ),
                ),
            ],
            options={
                "db_table": "sale_records",
            },
        ),
        migrations.AddConstraint(
            model_name="salerecord",
            constraint=models.UniqueConstraint(fields=("source", "source_local_id"), name="uniq_sale_source_item"),
        ),
        migrations.AddIndex(
            model_name="salerecord",
            index=models.Index(fields=["is_active", "ends_at"], name="sale_record_is_acti_9e4b12_idx"),
        ),
    ]
