"""
Page Fetcher - async httpx with cookie injection.

Fetches HTML detail and listing pages for the scraped sources. Injects age
confirmation cookies from the CatalogSource configuration or the default
fallbacks, reports the final URL after redirects (used to detect "redirected
to home" responses) and the cookies set by the server (replayed on the next
request for sources that require session continuity).
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

import httpx
from django.conf import settings

logger = logging.getLogger(__name__)


@dataclass
class FetchResponse:
    """Response from a fetch operation."""

    content: str
    status_code: int
    headers: Dict[str, str]
    success: bool
    url: str = ""
    cookies: Dict[str, str] = field(default_factory=dict)
    redirected: bool = False
    error: Optional[str] = None


class PageFetcher:
    """
    Async HTML fetcher.

    Features:
    - Browser User-Agent and Japanese Accept-Language
    - Default age-confirmation cookies merged with source cookies
    - Exponential backoff on timeouts and 5xx, no retry on 4xx
    - Optional fixed decoding for legacy encodings (EUC-JP, Shift_JIS)

    Usage:
        async with PageFetcher() as fetcher:
            response = await fetcher.fetch(url, cookies={"adc": "1"})
    """

    DEFAULT_USER_AGENT = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    )

    # Brotli is not requested; httpx only decodes it when the brotli package is installed
    DEFAULT_HEADERS = {
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "ja,en-US;q=0.9,en;q=0.8",
        "Accept-Encoding": "gzip, deflate",
        "Connection": "keep-alive",
    }

    def __init__(
        self,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the fetcher.

        Args:
            timeout: Request timeout in seconds (default INGEST_REQUEST_TIMEOUT)
            max_retries: Attempts per URL (default INGEST_MAX_RETRIES); 0 still
                makes one attempt
            user_agent: Custom User-Agent string
            transport: httpx transport override (tests use httpx.MockTransport)
        """
        self.timeout = timeout or getattr(settings, "INGEST_REQUEST_TIMEOUT", 30)
        if max_retries is None:
            max_retries = getattr(settings, "INGEST_MAX_RETRIES", 3)
        self.max_retries = max(1, max_retries)
        self.user_agent = user_agent or self.DEFAULT_USER_AGENT
        self.transport = transport

        self._http_client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        """Async context manager entry."""
        await self._init_http_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def _init_http_client(self):
        """Initialize HTTP client."""
        if self._http_client is None:
            headers = {
                **self.DEFAULT_HEADERS,
                "User-Agent": self.user_agent,
            }
            kwargs = {}
            if self.transport is not None:
                kwargs["transport"] = self.transport

            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers=headers,
                follow_redirects=True,
                **kwargs,
            )

    async def close(self):
        """Close HTTP client connection."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    def _get_default_cookies(self) -> Dict[str, str]:
        """Get default age confirmation cookies from settings."""
        return getattr(
            settings,
            "INGEST_DEFAULT_AGE_COOKIES",
            {"adc": "1", "age_check_done": "1", "over18": "1"},
        )

    async def fetch(
        self,
        url: str,
        cookies: Optional[Dict[str, str]] = None,
        custom_headers: Optional[Dict[str, str]] = None,
        use_default_cookies: bool = True,
        encoding: Optional[str] = None,
    ) -> FetchResponse:
        """
        Fetch URL content with cookie injection.

        Args:
            url: URL to fetch
            cookies: Source or session cookies to inject
            custom_headers: Additional headers (e.g. Referer)
            use_default_cookies: Whether to merge the default age cookies
            encoding: Decode the body with this codec instead of the
                response charset

        Returns:
            FetchResponse; success is False on timeouts, network errors
            and status codes >= 400
        """
        if self._http_client is None:
            await self._init_http_client()

        request_cookies = {}
        if use_default_cookies:
            request_cookies.update(self._get_default_cookies())
        if cookies:
            request_cookies.update(cookies)

        request_headers = {}
        if custom_headers:
            request_headers.update(custom_headers)

        try:
            response = await self._fetch_with_retry(
                url=url,
                cookies=request_cookies,
                headers=request_headers,
            )

            is_success = 200 <= response.status_code < 400
            error_msg = None
            if not is_success:
                error_msg = f"HTTP {response.status_code}"
                logger.warning(f"HTTP {response.status_code} for {url}")

            if encoding:
                content = response.content.decode(encoding, errors="replace")
            else:
                content = response.text

            return FetchResponse(
                content=content,
                status_code=response.status_code,
                headers=dict(response.headers),
                success=is_success,
                url=str(response.url),
                cookies=dict(response.cookies),
                redirected=bool(response.history),
                error=error_msg,
            )

        except httpx.TimeoutException as e:
            logger.warning(f"Timeout fetching {url}: {e}")
            return FetchResponse(
                content="",
                status_code=0,
                headers={},
                success=False,
                url=url,
                error=f"Timeout: {e}",
            )

        except httpx.HTTPStatusError as e:
            logger.warning(f"HTTP error for {url}: {e.response.status_code}")
            return FetchResponse(
                content="",
                status_code=e.response.status_code,
                headers=dict(e.response.headers),
                success=False,
                url=url,
                error=f"HTTP {e.response.status_code}",
            )

        except httpx.HTTPError as e:
            logger.error(f"Error fetching {url}: {e}")
            return FetchResponse(
                content="",
                status_code=0,
                headers={},
                success=False,
                url=url,
                error=str(e),
            )

    async def _fetch_with_retry(
        self,
        url: str,
        cookies: Dict[str, str],
        headers: Dict[str, str],
    ) -> httpx.Response:
        """
        Fetch with exponential backoff retry logic.

        Client errors (4xx) are returned immediately.
        """
        last_error = None

        for attempt in range(self.max_retries):
            try:
                response = await self._http_client.get(
                    url,
                    cookies=cookies,
                    headers=headers,
                )

                if 400 <= response.status_code < 500:
                    return response

                response.raise_for_status()
                return response

            except httpx.TimeoutException as e:
                last_error = e
                logger.warning(
                    f"Timeout fetching {url} (attempt {attempt + 1}/{self.max_retries})"
                )

            except httpx.HTTPStatusError as e:
                last_error = e
                logger.warning(
                    f"HTTP error {e.response.status_code} for {url} "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )

            except httpx.TransportError as e:
                last_error = e
                logger.warning(
                    f"Error fetching {url}: {e} (attempt {attempt + 1}/{self.max_retries})"
                )

            if attempt < self.max_retries - 1:
                delay = 2 ** attempt
                await asyncio.sleep(delay)

        # All retries exhausted
        if last_error:
            raise last_error
        raise httpx.TransportError(f"Failed to fetch {url} after {self.max_retries} attempts")
