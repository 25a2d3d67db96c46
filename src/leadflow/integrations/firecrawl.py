"""Firecrawl client for scraping, mapping, crawling and LLM extraction.

This module wraps the synchronous ``firecrawl-py`` SDK. Every call runs on the
default executor so the event loop stays free, and every SDK response is
normalised to plain dicts before it leaves this module.
"""

import asyncio
import os
from dataclasses import dataclass, field
from typing import Any, Optional

from firecrawl import Firecrawl

from ..logging_utils import get_logger

logger = get_logger(__name__)

# Constants
DEFAULT_TIMEOUT_MS = 30000  # 30 seconds
DEFAULT_FORMATS = ["markdown"]
SUPPORTED_FORMATS = ["markdown", "html", "rawHtml", "links", "screenshot"]
DEFAULT_MAP_LIMIT = 100


class FirecrawlError(Exception):
    """Base exception for Firecrawl client errors.

    Attributes:
        details: Error payload returned by the API, when there was one.
    """

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.details = details


class FirecrawlRateLimitError(FirecrawlError):
    """Raised when API rate limit is exceeded."""

    pass


class FirecrawlAuthError(FirecrawlError):
    """Raised when API authentication fails."""

    pass


class FirecrawlScrapeError(FirecrawlError):
    """Raised when scraping a URL fails."""

    pass


def to_plain(value: Any) -> Any:
    """Convert SDK pydantic models (and containers of them) to plain data."""
    if hasattr(value, "model_dump"):
        return to_plain(value.model_dump(exclude_none=True))
    if isinstance(value, dict):
        return {k: to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value


def _link_url(link: Any) -> Optional[str]:
    if isinstance(link, str):
        return link
    if isinstance(link, dict):
        return link.get("url")
    return None


def _categorize_error(operation: str, url: str, error: Exception) -> FirecrawlError:
    error_msg = str(error)
    response = getattr(error, "response", None)
    details = to_plain(getattr(response, "data", None))
    lowered = error_msg.lower()
    if "401" in error_msg or "unauthorized" in lowered:
        return FirecrawlAuthError(f"Authentication failed: {error_msg}", details)
    if "429" in error_msg or "rate limit" in lowered:
        return FirecrawlRateLimitError(f"Rate limit exceeded: {error_msg}", details)
    return FirecrawlScrapeError(f"{operation} failed for {url}: {error_msg}", details)


@dataclass
class ScrapeResult:
    """One scraped page.

    ``success`` is False with ``error`` set when Firecrawl returned nothing.
    """

    url: str
    markdown: Optional[str] = None
    html: Optional[str] = None
    links: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    success: bool = True
    error: Optional[str] = None


@dataclass
class CrawlResult:
    """Represents the result of crawling multiple pages from a site.

    Attributes:
        base_url: The starting URL for the crawl.
        pages: Crawled pages as plain dicts, in the order Firecrawl returned them.
        success: Whether the crawl completed successfully.
    """

    base_url: str
    pages: list[dict[str, Any]] = field(default_factory=list)
    success: bool = True

    @property
    def total_pages(self) -> int:
        return len(self.pages)


@dataclass
class ExtractResult:
    """Structured data returned by an LLM extraction.

    Attributes:
        data: Extracted object matching the requested schema.
        success: Whether Firecrawl reported success.
        warning: Optional warning reported alongside the data.
    """

    data: Optional[dict[str, Any]] = None
    success: bool = True
    warning: Optional[str] = None


class FirecrawlClient:
    """Async facade over the ``firecrawl-py`` SDK used by lead scraping and the
    scraper service.

    Example:
        >>> client = FirecrawlClient()
        >>> result = await client.extract([lead.url], COMPANY_INFO_SCHEMA)
        >>> result.data["company_name"]
        'Acme Robotics'
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None:
        """Raises ValueError if neither ``api_key`` nor FIRECRAWL_API_KEY is set."""
        self.api_key = api_key or os.environ.get("FIRECRAWL_API_KEY")
        if not self.api_key:
            raise ValueError(
                "Firecrawl API key required. Set FIRECRAWL_API_KEY environment "
                "variable or pass api_key parameter."
            )

        self.timeout_ms = timeout_ms
        self._client = Firecrawl(api_key=self.api_key)
        logger.info("FirecrawlClient initialized with %dms timeout", timeout_ms)

    async def _call(self, operation: str, url: str, func, *args, **kwargs) -> Any:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, lambda: func(*args, **kwargs))
        except Exception as e:
            logger.error("%s failed for %s: %s", operation, url, e)
            raise _categorize_error(operation, url, e) from e

    def _parse_scrape_response(
        self,
        url: str,
        response: dict[str, Any],
    ) -> ScrapeResult:
        """Parse a normalised SDK document into a ScrapeResult."""
        metadata = response.get("metadata") or {}
        if not metadata:
            metadata = {
                "title": response.get("title"),
                "description": response.get("description"),
                "language": response.get("language"),
            }
            metadata = {k: v for k, v in metadata.items() if v is not None}

        links = response.get("links") or []
        if isinstance(links, str):
            links = [links]
        links = [u for u in (_link_url(link) for link in links) if u]

        return ScrapeResult(
            url=url,
            markdown=response.get("markdown"),
            html=response.get("html"),
            links=links,
            metadata=metadata,
            success=True,
            error=None,
        )

    async def scrape_url(
        self,
        url: str,
        formats: Optional[list[str]] = None,
        only_main_content: bool = True,
        include_tags: Optional[list[str]] = None,
        wait_for: Optional[int] = None,
    ) -> ScrapeResult:
        """Scrape one page.

        ``formats`` defaults to markdown only. ``include_tags`` and ``wait_for``
        (milliseconds of JavaScript rendering) are passed through when set.

        Raises:
            FirecrawlError: Auth, rate-limit or scrape failure.
        """
        if formats is None:
            formats = DEFAULT_FORMATS.copy()

        for fmt in formats:
            if fmt not in SUPPORTED_FORMATS:
                logger.warning("Unsupported format '%s', ignoring", fmt)

        logger.info("Scraping URL: %s (formats: %s)", url, formats)

        params: dict[str, Any] = {
            "formats": formats,
            "only_main_content": only_main_content,
            "timeout": self.timeout_ms,
        }
        if include_tags:
            params["include_tags"] = include_tags
        if wait_for:
            params["wait_for"] = wait_for

        response = await self._call("Scrape", url, self._client.scrape, url, **params)

        if not response:
            logger.warning("Empty response from Firecrawl for URL: %s", url)
            return ScrapeResult(
                url=url,
                success=False,
                error="Empty response from Firecrawl API",
            )

        result = self._parse_scrape_response(url, to_plain(response))
        logger.info("Scraped %s: %d links", url, len(result.links))
        return result

    async def map_site(
        self,
        url: str,
        limit: int = DEFAULT_MAP_LIMIT,
    ) -> list[str]:
        """Discover up to ``limit`` page URLs of a site."""
        logger.info("Mapping %s (limit=%d)", url, limit)

        response = await self._call("Map", url, self._client.map, url, limit=limit)
        data = to_plain(response) or {}
        links = data.get("links") or [] if isinstance(data, dict) else []
        urls = [u for u in (_link_url(link) for link in links) if u]

        logger.info("Mapped %s: %d links", url, len(urls))
        return urls

    async def crawl_site(
        self,
        url: str,
        max_pages: int = 10,
        formats: Optional[list[str]] = None,
        only_main_content: bool = True,
    ) -> CrawlResult:
        """Crawl up to ``max_pages`` pages from ``url`` and wait for the job."""
        if formats is None:
            formats = DEFAULT_FORMATS.copy()

        logger.info("Starting crawl of %s (max_pages=%d)", url, max_pages)

        params: dict[str, Any] = {
            "limit": max_pages,
            "scrape_options": {
                "formats": formats,
                "only_main_content": only_main_content,
            },
        }
        response = await self._call("Crawl", url, self._client.crawl, url, **params)

        data = to_plain(response) or {}
        pages = data.get("data") or [] if isinstance(data, dict) else []
        result = CrawlResult(base_url=url, pages=list(pages), success=True)

        logger.info("Crawl complete for %s: %d pages crawled", url, result.total_pages)
        return result

    async def extract(
        self,
        urls: list[str],
        schema: dict[str, Any],
        prompt: Optional[str] = None,
    ) -> ExtractResult:
        """Run an LLM extraction over one or more URLs.

        Args:
            urls: Pages to extract from.
            schema: JSON schema describing the object to extract.
            prompt: Optional extraction instructions.

        Returns:
            ExtractResult with the extracted object.

        Raises:
            FirecrawlError: If the extraction fails.
        """
        target = urls[0] if urls else ""
        logger.info("Extracting structured data from %s", ", ".join(urls))

        params: dict[str, Any] = {"schema": schema}
        if prompt:
            params["prompt"] = prompt

        response = await self._call("Extract", target, self._client.extract, urls, **params)
        data = to_plain(response) or {}

        if data.get("success") is False and data.get("error"):
            raise FirecrawlScrapeError(
                f"Extract failed for {target}: {data['error']}", data
            )

        return ExtractResult(
            data=data.get("data"),
            success=bool(data.get("success", True)),
            warning=data.get("warning"),
        )
