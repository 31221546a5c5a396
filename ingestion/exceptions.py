"""
Error taxonomy for the ingestion pipeline.

Per-item errors are caught at the item boundary by the ingestion runner and
turned into statistics counters. Only ConfigurationError aborts a run.

- TransportError: network failure or non-2xx response
- RateLimitExceeded: client-side quota guard tripped before a request
- NotAProduct: redirect, placeholder, top page or age gate detected
- ValidationRejected: a field (or the whole record, for titles) failed validation
- PersistenceConflict: canonical upsert still conflicting after retries
"""

from typing import Optional


class IngestionError(Exception):
    """Base class for all ingestion errors."""


class ConfigurationError(IngestionError, ValueError):
    """Required configuration (credentials, storage) is missing."""


class TransportError(IngestionError):
    """Network failure or non-2xx response from a source."""

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class RateLimitExceeded(IngestionError):
    """
    Raised by the client-side sliding window before any request is sent.

    Attributes:
        retry_after: Seconds until the oldest recorded request leaves the window
    """

    def __init__(self, message: str, retry_after: float = 0.0):
        super().__init__(message)
        self.retry_after = retry_after


class NotAProduct(IngestionError):
    """The fetched page is not a genuine product detail page."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ValidationRejected(IngestionError):
    """A field value failed validation."""

    def __init__(self, field: str, value, reason: str = ""):
        message = f"{field} rejected: {value!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.field = field
        self.value = value
        self.reason = reason


class PersistenceConflict(IngestionError):
    """Concurrent upsert kept conflicting on the unique identifier."""
