"""
Raw Response Store - content-addressed capture log.

Features:
- One current RawResponse per (source, source-local id)
- SHA-256 change detection; identical content only refreshes fetched_at
- Skip signal when content is unchanged and already processed
- Large bodies written through Django's default storage, falling back
  to inline storage when the blob store is unavailable
- Body loading for offline reprocessing
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from django.conf import settings
from django.core.files.base import ContentFile
from django.core.files.storage import default_storage
from django.db import IntegrityError, transaction
from django.utils import timezone

from ingestion.models import CatalogSource, RawContentType, RawResponse

logger = logging.getLogger(__name__)


@dataclass
class RawSaveResult:
    """Outcome of RawResponseStore.save."""

    raw: RawResponse
    created: bool
    changed: bool
    should_skip: bool


def serialize_body(body: Any) -> Tuple[str, str]:
    """
    Serialize a raw body for hashing and storage.

    API payloads (dict/list) are dumped as JSON with sorted keys so that
    key order does not change the hash.

    Returns:
        Tuple of (text, RawContentType value)
    """
    if isinstance(body, (dict, list)):
        return (
            json.dumps(body, sort_keys=True, ensure_ascii=False, default=str),
            RawContentType.JSON,
        )
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    return str(body), RawContentType.HTML


class RawResponseStore:
    """
    Persist and reload raw captures.

    Usage:
        store = RawResponseStore()
        result = store.save(source, "12345", url, html)
        if result.should_skip:
            return
        ...
        store.mark_processed(result.raw)
    """

    def __init__(
        self,
        storage=None,
        blob_enabled: Optional[bool] = None,
        blob_min_bytes: Optional[int] = None,
    ):
        self.storage = storage or default_storage
        self.blob_enabled = (
            blob_enabled
            if blob_enabled is not None
            else getattr(settings, "INGEST_RAW_BLOB_ENABLED", False)
        )
        self.blob_min_bytes = blob_min_bytes or getattr(
            settings, "INGEST_RAW_BLOB_MIN_BYTES", 256 * 1024
        )

    def save(
        self,
        source: CatalogSource,
        source_local_id: str,
        url: str,
        body: Any,
        force: bool = False,
        content_type: Optional[str] = None,
    ) -> RawSaveResult:
        """
        Record a fetch result.

        Args:
            source: CatalogSource the body came from
            source_local_id: Item id within the source
            url: Fetched URL (may be empty for feed rows)
            body: HTML text, or dict/list for API and CSV records
            force: Treat unchanged content as needing reprocessing
            content_type: Override the detected RawContentType

        Returns:
            RawSaveResult; should_skip is True only when the hash is unchanged,
            the previous capture was processed and force is False
        """
        text, detected_type = serialize_body(body)
        content_type = content_type or detected_type
        content_hash = RawResponse.compute_content_hash(text)
        now = timezone.now()

        with transaction.atomic():
            raw = (
                RawResponse.objects.select_for_update()
                .filter(source=source, source_local_id=source_local_id)
                .first()
            )

            if raw is None:
                raw = self._create(source, source_local_id, url, text, content_type, content_hash, now)
                if raw is not None:
                    return RawSaveResult(raw=raw, created=True, changed=True, should_skip=False)
                # Lost a create race; the row exists now
                raw = RawResponse.objects.select_for_update().get(
                    source=source, source_local_id=source_local_id
                )

            if raw.content_hash == content_hash:
                raw.fetched_at = now
                raw.fetch_count += 1
                raw.save(update_fields=["fetched_at", "fetch_count"])
                should_skip = raw.processed_at is not None and not force
                return RawSaveResult(raw=raw, created=False, changed=False, should_skip=should_skip)

            logger.debug(
                f"Raw content changed for {source.slug}:{source_local_id} "
                f"({raw.content_hash[:12]} -> {content_hash[:12]})"
            )
            self._assign_body(raw, text, content_hash)
            raw.url = url or raw.url
            raw.content_type = content_type
            raw.content_hash = content_hash
            raw.fetched_at = now
            raw.processed_at = None
            raw.fetch_count += 1
            raw.save()
            return RawSaveResult(raw=raw, created=False, changed=True, should_skip=False)

    def _create(self, source, source_local_id, url, text, content_type, content_hash, now) -> Optional[RawResponse]:
        raw = RawResponse(
            source=source,
            source_local_id=source_local_id,
            url=url or "",
            content_type=content_type,
            content_hash=content_hash,
            first_fetched_at=now,
            fetched_at=now,
        )
        self._assign_body(raw, text, content_hash)
        try:
            with transaction.atomic():
                raw.save(force_insert=True)
        except IntegrityError:
            logger.debug(f"Concurrent raw insert for {source.slug}:{source_local_id}")
            return None
        return raw

    def _assign_body(self, raw: RawResponse, text: str, content_hash: str):
        """Store the body inline or in the blob store."""
        encoded = text.encode("utf-8")
        raw.body_size = len(encoded)

        if self.blob_enabled and raw.body_size >= self.blob_min_bytes:
            name = f"raw/{raw.source.slug}/{content_hash[:2]}/{content_hash}.txt"
            try:
                if self.storage.exists(name):
                    stored_name = name
                else:
                    stored_name = self.storage.save(name, ContentFile(encoded))
                raw.blob_name = stored_name
                raw.body = None
                return
            except Exception as e:
                logger.warning(
                    f"Blob store unavailable for {raw.source.slug}:{raw.source_local_id}, "
                    f"storing inline: {e}"
                )

        raw.blob_name = ""
        raw.body = text

    def load_body(self, raw: RawResponse) -> Optional[str]:
        """
        Load the stored body for reprocessing.

        Returns:
            Body text, or None when the blob cannot be read and there is no
            inline copy
        """
        if not raw.blob_name:
            return raw.body

        try:
            with self.storage.open(raw.blob_name, "rb") as handle:
                return handle.read().decode("utf-8")
        except Exception as e:
            logger.error(f"Failed to read raw blob {raw.blob_name}: {e}")
            return raw.body

    def load_json(self, raw: RawResponse) -> Optional[Any]:
        """Load and decode a JSON capture (API and CSV records)."""
        body = self.load_body(raw)
        if body is None:
            return None
        return json.loads(body)

    def mark_processed(self, raw: RawResponse):
        """Stamp processed_at after a successful parse."""
        now = timezone.now()
        RawResponse.objects.filter(pk=raw.pk).update(processed_at=now)
        raw.processed_at = now
