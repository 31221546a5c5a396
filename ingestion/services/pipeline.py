"""
Ingestion runner - drives one source run end to end.

Flow per item:
1. Fetch (API page, CSV row, or HTML detail page)
2. Capture the raw body; unchanged and already processed content is skipped
3. Validate the record (title, placeholder data)
4. Clean performer names
5. Resolver.upsert, raw link and sale record
6. Mark the capture processed

Per-item errors become statistics counters. ConfigurationError aborts the
run; cancellation is checked between items.
"""

import logging
import time
from dataclasses import asdict, dataclass, field, fields
from itertools import islice
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from django.conf import settings
from django.utils import timezone

from ingestion.exceptions import (
    ConfigurationError,
    NotAProduct,
    PersistenceConflict,
    RateLimitExceeded,
    TransportError,
    ValidationRejected,
)
from ingestion.models import (
    CatalogSource,
    IngestionRun,
    IngestionRunStatus,
    RawContentType,
    RawResponse,
    SourceKind,
)
from ingestion.parsers.classifier import validate_product_data
from ingestion.services.names import clean_performer_names
from ingestion.services.product_types import IntermediateProduct, ProductIdentity, ProductPatch
from ingestion.services.raw_store import RawResponseStore
from ingestion.services.resolver import Resolver

logger = logging.getLogger(__name__)

API_PAGE_SIZE = 100


@dataclass
class IngestionOptions:
    """
    Options accepted by every per-source entry point.

    Attributes:
        limit: Maximum items to process
        offset: Items to skip from the newest (ignored with start_id)
        start_id: First source-local id of an explicit id range
        end_id: Last id of the range (defaults to start_id)
        force_reprocess: Process captures even when unchanged
        enable_enrichment: Store performer readings and aliases
        delay_seconds: Override the source's inter-item delay
    """

    limit: int = 100
    offset: int = 0
    start_id: Optional[str] = None
    end_id: Optional[str] = None
    force_reprocess: bool = False
    enable_enrichment: bool = False
    delay_seconds: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "IngestionOptions":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})


@dataclass
class IngestionStats:
    """Counters reported at the end of a run."""

    fetched: int = 0
    new_products: int = 0
    updated_products: int = 0
    skipped_unchanged: int = 0
    skipped_invalid: int = 0
    not_products: int = 0
    errors: int = 0
    raw_saved: int = 0
    sales_saved: int = 0
    started_at: Optional[Any] = None
    finished_at: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {name: getattr(self, name) for name in IngestionRun.STAT_FIELDS}
        data["duration_seconds"] = self.duration_seconds
        return data

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at and self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return None


class RunStopped(Exception):
    """Internal signal: stop iterating (cancellation or exhausted rate-limit wait)."""

    def __init__(self, status: str, message: str = ""):
        super().__init__(message or status)
        self.status = status
        self.message = message


class IngestionRunner:
    """
    Run one ingestion batch for a CatalogSource.

    Usage:
        runner = IngestionRunner(source, IngestionOptions(limit=50))
        stats = runner.run()

    Collaborators are injectable for tests; by default they come from the
    source registry.
    """

    def __init__(
        self,
        source: CatalogSource,
        options: Optional[IngestionOptions] = None,
        run: Optional[IngestionRun] = None,
        client=None,
        feed=None,
        parser=None,
        raw_store: Optional[RawResponseStore] = None,
        resolver: Optional[Resolver] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.source = source
        self.options = options or IngestionOptions()
        self.ingestion_run = run
        self.client = client
        self.feed = feed
        self.parser = parser
        self.raw_store = raw_store or RawResponseStore()
        self.resolver = resolver or Resolver(store_performer_details=self.options.enable_enrichment)
        self.sleep = sleep
        self.stats = IngestionStats()

    # Run lifecycle ------------------------------------------------------

    @property
    def delay_seconds(self) -> float:
        if self.options.delay_seconds is not None:
            return self.options.delay_seconds
        if self.source.request_delay_seconds is not None:
            return self.source.request_delay_seconds
        return getattr(settings, "INGEST_REQUEST_DELAY", 1.5)

    def run(self) -> IngestionStats:
        """
        Execute the batch and store the summary on the IngestionRun row.

        Returns:
            IngestionStats

        Raises:
            ConfigurationError: Missing credentials; the run is marked failed
        """
        if self.ingestion_run is None:
            self.ingestion_run = IngestionRun.objects.create(
                source=self.source, options=self.options.to_dict()
            )
        self.ingestion_run.start()
        self.stats.started_at = timezone.now()

        logger.info(
            f"Starting ingestion for {self.source.slug} "
            f"(limit={self.options.limit}, offset={self.options.offset}, "
            f"start_id={self.options.start_id}, force={self.options.force_reprocess})"
        )

        status = IngestionRunStatus.COMPLETED
        message = ""
        try:
            if self.source.kind == SourceKind.API:
                self._run_api()
            elif self.source.kind == SourceKind.CSV:
                self._run_csv()
            else:
                self._run_html()
        except RunStopped as e:
            status = e.status
            message = e.message
        except ConfigurationError as e:
            logger.error(f"ConfigurationError: {self.source.slug} run aborted: {e}")
            self._finish(IngestionRunStatus.FAILED, str(e))
            raise

        self._finish(status, message)
        return self.stats

    def _finish(self, status: str, message: str = ""):
        self.stats.finished_at = timezone.now()
        self.ingestion_run.complete(self.stats.to_dict(), status=status, error_message=message)
        logger.info(f"Ingestion {status} for {self.source.slug}: {self.stats.to_dict()}")

    def _check_cancel(self):
        if self.ingestion_run.is_cancel_requested():
            logger.info(f"Ingestion for {self.source.slug} cancelled after {self.stats.fetched} items")
            raise RunStopped(IngestionRunStatus.CANCELLED, "cancelled")

    def _pause(self):
        if self.delay_seconds > 0:
            self.sleep(self.delay_seconds)

    def _with_rate_limit(self, call: Callable, *args, **kwargs):
        """
        Call a rate-limited client method, waiting out RateLimitExceeded.

        The run stops when the required wait exceeds INGEST_RATE_LIMIT_MAX_WAIT.
        """
        max_wait = getattr(settings, "INGEST_RATE_LIMIT_MAX_WAIT", 65)
        waited = 0.0
        while True:
            try:
                return call(*args, **kwargs)
            except RateLimitExceeded as e:
                if waited + e.retry_after > max_wait:
                    logger.warning(f"RateLimitExceeded: {self.source.slug} stopping batch ({e})")
                    raise RunStopped(IngestionRunStatus.COMPLETED, f"rate limited: {e}") from e
                logger.info(f"RateLimitExceeded: {self.source.slug} pausing {e.retry_after:.1f}s")
                self.sleep(e.retry_after)
                waited += e.retry_after

    # Item processing ----------------------------------------------------

    def _capture(self, product: IntermediateProduct, body: Any, content_type: str) -> Tuple[Optional[RawResponse], bool]:
        """Save the raw body. Returns (raw, should_skip)."""
        saved = self.raw_store.save(
            self.source,
            product.source_local_id,
            product.url or product.affiliate_url,
            body,
            force=self.options.force_reprocess,
            content_type=content_type,
        )
        if saved.changed:
            self.stats.raw_saved += 1
        return saved.raw, saved.should_skip

    def _persist(self, product: IntermediateProduct, raw: Optional[RawResponse]):
        """Validate and upsert one record; marks the capture processed."""
        validation = validate_product_data(
            product.title, product.description, self.source.slug, product.source_local_id
        )
        if not validation.is_product:
            logger.info(
                f"ValidationRejected: {self.source.slug}:{product.source_local_id} "
                f"title {product.title!r} ({validation.reason})"
            )
            self.stats.skipped_invalid += 1
            if raw is not None:
                self.raw_store.mark_processed(raw)
            return

        performers = clean_performer_names(product.performer_names, product.title)
        result = self.resolver.upsert(
            ProductIdentity.from_product(product),
            ProductPatch.from_intermediate(product, data_origin=self.source.kind),
            performers,
        )
        if result.created:
            self.stats.new_products += 1
        else:
            self.stats.updated_products += 1

        if raw is not None:
            self.resolver.link_raw_response(result.product, raw)

        try:
            if self.resolver.record_sale(result.product_source, product.sale_info):
                self.stats.sales_saved += 1
        except ValidationRejected as e:
            logger.info(f"ValidationRejected: {self.source.slug}:{product.source_local_id} {e}")

        if raw is not None:
            self.raw_store.mark_processed(raw)

    def _process_item(self, local_id: str, work: Callable[[], None]):
        """Run one item, converting its errors into counters."""
        try:
            work()
        except (ConfigurationError, RunStopped):
            raise
        except NotAProduct as e:
            logger.info(f"NotAProduct: {self.source.slug}:{local_id} ({e.reason})")
            self.stats.not_products += 1
        except ValidationRejected as e:
            logger.info(f"ValidationRejected: {self.source.slug}:{local_id} {e}")
            self.stats.skipped_invalid += 1
        except TransportError as e:
            logger.warning(f"TransportError: {self.source.slug}:{local_id} {e}")
            self.stats.errors += 1
        except PersistenceConflict as e:
            logger.error(f"PersistenceConflict: {self.source.slug}:{local_id} {e}")
            self.stats.errors += 1
        except Exception as e:
            logger.exception(f"Unexpected error for {self.source.slug}:{local_id}: {e}")
            self.stats.errors += 1

    # API sources --------------------------------------------------------

    def _get_client(self):
        if self.client is None:
            from ingestion.sources import get_api_client

            self.client = get_api_client(self.source.slug, self.source)
        return self.client

    def _iter_api_records(self) -> Iterator[Tuple[IntermediateProduct, Dict]]:
        client = self._get_client()

        if self.options.start_id:
            ids = [self.options.start_id]
            if self.options.end_id and self.options.end_id != self.options.start_id:
                logger.warning(
                    f"{self.source.slug} API has no id ranges; ingesting {self.options.start_id} only"
                )
            for local_id in ids:
                product = self._with_rate_limit(client.get_item, local_id)
                if product is None:
                    logger.info(f"{self.source.slug}:{local_id} not found via API")
                    continue
                yield product, product.raw_data or {}
            return

        offset = self.options.offset
        remaining = self.options.limit
        first_page = True
        while remaining > 0:
            if not first_page:
                self._pause()
            first_page = False

            page_size = min(API_PAGE_SIZE, remaining)
            try:
                page = self._with_rate_limit(client.get_recent_items, limit=page_size, offset=offset)
            except TransportError as e:
                logger.warning(f"TransportError: {self.source.slug} page at offset {offset}: {e}")
                self.stats.errors += 1
                return

            if page.rejected:
                self.stats.fetched += page.rejected
                self.stats.skipped_invalid += page.rejected
            page_length = len(page.items) + page.rejected
            if not page_length:
                return
            for product, raw_item in zip(page.items, page.raw_items):
                yield product, raw_item
            remaining -= page_length
            offset += page_length
            if page.total_count and offset >= page.total_count:
                return

    def _run_api(self):
        for product, raw_item in self._iter_api_records():
            self._check_cancel()
            self.stats.fetched += 1

            def work(product=product, raw_item=raw_item):
                raw, should_skip = self._capture(product, raw_item, RawContentType.JSON)
                if should_skip:
                    self.stats.skipped_unchanged += 1
                    return
                self._persist(product, raw)

            self._process_item(product.source_local_id, work)

    # CSV sources --------------------------------------------------------

    def _get_feed(self):
        if self.feed is None:
            from ingestion.sources import get_csv_feed

            self.feed = get_csv_feed(self.source.slug)
        return self.feed

    def _csv_id_range(self, rows: Iterator[List[str]]) -> Iterator[List[str]]:
        """Rows whose numeric product id lies between start_id and end_id, inclusive."""
        end_id = self.options.end_id or self.options.start_id
        try:
            low, high = sorted((int(self.options.start_id), int(end_id)))
        except ValueError:
            raise ConfigurationError(
                f"{self.source.slug} id range needs numeric ids, got {self.options.start_id}..{end_id}"
            )
        for row in rows:
            product_id = row[0].strip() if row else ""
            if product_id.isdigit() and low <= int(product_id) <= high:
                yield row

    def _run_csv(self):
        feed = self._get_feed()
        try:
            text = feed.download()
        except TransportError as e:
            logger.error(f"TransportError: {self.source.slug} CSV download failed: {e}")
            self.stats.errors += 1
            return

        rows = feed.iter_rows(text)
        if self.options.start_id:
            rows = islice(self._csv_id_range(rows), self.options.limit)
        else:
            rows = islice(rows, self.options.offset, self.options.offset + self.options.limit)

        for row in rows:
            self._check_cancel()
            self.stats.fetched += 1
            local_id = row[0].strip() if row else ""

            def work(row=row):
                product = feed.normalize_row(row)
                raw, should_skip = self._capture(product, row, RawContentType.CSV_ROW)
                if should_skip:
                    self.stats.skipped_unchanged += 1
                    return
                self._persist(product, raw)

            self._process_item(local_id, work)

    # HTML sources -------------------------------------------------------

    def _get_parser(self):
        if self.parser is None:
            from ingestion.parsers.base import get_parser

            self.parser = get_parser(self.source.slug, source=self.source, raw_store=self.raw_store)
        return self.parser

    def _html_ids(self) -> Iterator[str]:
        parser = self._get_parser()
        if self.options.start_id:
            end_id = self.options.end_id or self.options.start_id
            return islice(parser.iter_id_range(self.options.start_id, end_id), self.options.limit)
        return iter(parser.collect_local_ids(self.options.limit, self.options.offset))

    def _run_html(self):
        parser = self._get_parser()
        for index, local_id in enumerate(self._html_ids()):
            self._check_cancel()
            if index:
                self._pause()
            self.stats.fetched += 1

            def work(local_id=local_id):
                result = parser.parse_detail_page(local_id, force_reprocess=self.options.force_reprocess)
                if result.reason == "not_product":
                    self.stats.not_products += 1
                    return
                if result.reason in ("transport_error", "parse_error"):
                    self.stats.errors += 1
                    return
                if result.should_skip:
                    self.stats.skipped_unchanged += 1
                    return
                if result.raw_response is not None:
                    self.stats.raw_saved += 1
                self._persist(result.product, result.raw_response)

            self._process_item(local_id, work)


def reprocess_raw_responses(
    source: CatalogSource,
    only_unprocessed: bool = False,
    limit: Optional[int] = None,
    enable_enrichment: bool = False,
    parser=None,
    feed=None,
    resolver: Optional[Resolver] = None,
    raw_store: Optional[RawResponseStore] = None,
) -> IngestionStats:
    """
    Re-derive canonical records from stored captures without network access.

    Args:
        source: CatalogSource whose captures are replayed
        only_unprocessed: Only captures with processed_at unset
        limit: Maximum captures to replay

    Returns:
        IngestionStats (fetched counts captures read)
    """
    raw_store = raw_store or RawResponseStore()
    run = IngestionRun.objects.create(
        source=source,
        options={"reprocess": True, "only_unprocessed": only_unprocessed, "limit": limit},
    )
    runner = IngestionRunner(
        source,
        IngestionOptions(enable_enrichment=enable_enrichment),
        run=run,
        raw_store=raw_store,
        resolver=resolver,
    )
    run.start()
    runner.stats.started_at = timezone.now()

    captures = RawResponse.objects.filter(source=source).order_by("fetched_at")
    if only_unprocessed:
        captures = captures.filter(processed_at__isnull=True)
    if limit:
        captures = captures[:limit]

    if source.kind == SourceKind.API:
        from ingestion.sources import get_api_client_class

        client_class = get_api_client_class(source.slug)

        def derive(raw):
            return client_class.normalize_item(raw_store.load_json(raw))

    elif source.kind == SourceKind.CSV:
        if feed is None:
            from ingestion.sources import get_csv_feed

            try:
                feed = get_csv_feed(source.slug)
            except ConfigurationError as e:
                logger.error(f"ConfigurationError: {source.slug} reprocess aborted: {e}")
                runner._finish(IngestionRunStatus.FAILED, str(e))
                raise

        def derive(raw):
            return feed.normalize_row(raw_store.load_json(raw))

    else:
        if parser is None:
            from ingestion.parsers.base import get_parser

            parser = get_parser(source.slug)

        def derive(raw):
            html = raw_store.load_body(raw)
            if html is None:
                raise TransportError(f"capture body unavailable ({raw.blob_name})")
            return parser.reparse(raw.source_local_id, html, raw.url)

    status = IngestionRunStatus.COMPLETED
    try:
        for raw in captures.iterator():
            runner._check_cancel()
            runner.stats.fetched += 1
            runner._process_item(raw.source_local_id, lambda raw=raw: runner._persist(derive(raw), raw))
    except RunStopped as e:
        status = e.status

    runner._finish(status)
    return runner.stats
