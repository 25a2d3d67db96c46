"""Company information scraper API.

A small FastAPI service in front of Firecrawl for the web app.

Endpoints:
- GET /extract?url= - LLM extraction of a structured company profile
- GET /scrape?url= - Single page scrape (markdown, html, links)
- GET /map?url= - Site map of up to 100 pages
- GET /deep-scrape?url=&maxPages=5 - Map, then crawl up to maxPages pages
- GET /health - Health check endpoint

Environment Variables:
- FIRECRAWL_API_KEY: Firecrawl API key
- SCRAPER_HOST / SCRAPER_PORT: Bind address (default 0.0.0.0:3002)

Example:
    uvicorn scrape_service.main:app --host 0.0.0.0 --port 3002
"""

from contextlib import asynccontextmanager
from typing import Any, Optional
from urllib.parse import urlparse

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from leadflow.config import config
from leadflow.integrations.company_info import COMPANY_INFO_SCHEMA, EXTRACT_PROMPT
from leadflow.integrations.firecrawl import FirecrawlAuthError, FirecrawlClient
from leadflow.logging_utils import get_logger, setup_logging
from leadflow.utils import utc_iso_now

logger = get_logger(__name__)

SERVICE_NAME = "firecrawler"
MAP_LIMIT = 100
DEFAULT_MAX_PAGES = 5
SCRAPE_INCLUDE_TAGS = ["title", "meta", "h1", "h2", "h3", "p", "a"]
SCRAPE_WAIT_FOR_MS = 2000

_firecrawl_client: Optional[FirecrawlClient] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown."""
    logger.info("Scraper service starting...")
    if not config.FIRECRAWL_API_KEY:
        logger.warning("FIRECRAWL_API_KEY not set - every endpoint will fail")
    yield
    logger.info("Scraper service shutting down...")


app = FastAPI(
    title="Company Information Scraper API",
    description="Firecrawl-backed company scraping endpoints",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["*"],
)


def get_firecrawl_client() -> Optional[FirecrawlClient]:
    """Dependency returning the shared Firecrawl client, or None if unconfigured."""
    global _firecrawl_client
    if _firecrawl_client is None and config.FIRECRAWL_API_KEY:
        _firecrawl_client = FirecrawlClient(
            api_key=config.FIRECRAWL_API_KEY,
            timeout_ms=config.FIRECRAWL_TIMEOUT_SECONDS * 1000,
        )
    return _firecrawl_client


def _require_client(client: Optional[FirecrawlClient]) -> FirecrawlClient:
    if client is None:
        raise FirecrawlAuthError("FIRECRAWL_API_KEY environment variable is not set")
    return client


def is_valid_url(value: str) -> bool:
    """Absolute URL check: a scheme and a host are required."""
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return bool(parsed.scheme and parsed.netloc)


def validate_url(url: Optional[str], usage: str) -> Optional[JSONResponse]:
    """Return a 400 response for a missing or malformed ``url``, else None."""
    if not url:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": "Missing URL parameter",
                "message": f"Please provide a URL parameter: {usage}",
            },
        )
    if not is_valid_url(url):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": "Invalid URL format",
                "message": "Please provide a valid URL",
            },
        )
    return None


def failure_response(error: str, exc: Exception) -> JSONResponse:
    logger.error("%s: %s", error, exc, exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": error,
            "message": str(exc) or "An unexpected error occurred",
            "details": getattr(exc, "details", None),
        },
    )


@app.get("/")
async def root() -> dict[str, Any]:
    """Service descriptor."""
    return {
        "message": "Company Information Scraper API",
        "endpoints": {
            "extract": "GET /extract?url=<company-website-url> - Extract structured company info",
            "scrape": "GET /scrape?url=<company-website-url> - Scrape page content",
            "map": "GET /map?url=<company-website-url> - Map website structure",
            "deepScrape": (
                "GET /deep-scrape?url=<company-website-url>&maxPages=5 "
                "- Deep scrape multiple pages"
            ),
        },
    }


@app.get("/health")
async def health_check() -> dict[str, Any]:
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "configured": bool(config.FIRECRAWL_API_KEY),
    }


@app.get("/extract")
async def extract(
    url: Optional[str] = Query(None),
    client: Optional[FirecrawlClient] = Depends(get_firecrawl_client),
):
    """Extract a structured company profile with Firecrawl's LLM extraction."""
    invalid = validate_url(url, "/extract?url=https://example.com")
    if invalid is not None:
        return invalid

    try:
        result = await _require_client(client).extract(
            [url], COMPANY_INFO_SCHEMA, EXTRACT_PROMPT
        )
    except Exception as e:
        return failure_response("Failed to extract company information", e)

    return {
        "url": url,
        "extractedAt": utc_iso_now(),
        "data": result.data,
        "metadata": {
            "success": result.success,
            "warning": result.warning,
        },
    }


@app.get("/scrape")
async def scrape(
    url: Optional[str] = Query(None),
    client: Optional[FirecrawlClient] = Depends(get_firecrawl_client),
):
    """Scrape a single page including links and page metadata."""
    invalid = validate_url(url, "/scrape?url=https://example.com")
    if invalid is not None:
        return invalid

    try:
        result = await _require_client(client).scrape_url(
            url,
            formats=["markdown", "html", "links"],
            only_main_content=False,
            include_tags=SCRAPE_INCLUDE_TAGS,
            wait_for=SCRAPE_WAIT_FOR_MS,
        )
    except Exception as e:
        return failure_response("Failed to scrape website", e)

    metadata = result.metadata or {}
    return {
        "url": url,
        "scrapedAt": utc_iso_now(),
        "data": {
            "metadata": metadata,
            "content": {
                "markdown": result.markdown or "",
                "html": result.html or "",
            },
            "links": result.links,
        },
        "summary": {
            "title": metadata.get("title") or "No title found",
            "description": metadata.get("description") or "No description found",
            "keywords": metadata.get("keywords") or [],
            "language": metadata.get("language") or "Not specified",
            "sourceURL": metadata.get("sourceURL") or metadata.get("source_url") or url,
            "totalLinks": len(result.links),
        },
    }


@app.get("/map")
async def map_site(
    url: Optional[str] = Query(None),
    client: Optional[FirecrawlClient] = Depends(get_firecrawl_client),
):
    """List the pages of a site."""
    invalid = validate_url(url, "/map?url=https://example.com")
    if invalid is not None:
        return invalid

    try:
        links = await _require_client(client).map_site(url, limit=MAP_LIMIT)
    except Exception as e:
        return failure_response("Failed to map website", e)

    return {
        "url": url,
        "mappedAt": utc_iso_now(),
        "data": {"links": links},
        "summary": {
            "totalPages": len(links),
            "baseUrl": url,
        },
    }


@app.get("/deep-scrape")
async def deep_scrape(
    url: Optional[str] = Query(None),
    max_pages: Optional[str] = Query(None, alias="maxPages"),
    client: Optional[FirecrawlClient] = Depends(get_firecrawl_client),
):
    """Map a site, then crawl up to ``maxPages`` of its pages."""
    invalid = validate_url(url, "/deep-scrape?url=https://example.com&maxPages=5")
    if invalid is not None:
        return invalid

    if max_pages is None or max_pages == "":
        page_limit = DEFAULT_MAX_PAGES
    else:
        try:
            page_limit = int(max_pages)
        except ValueError:
            page_limit = 0
        if page_limit < 1:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={
                    "error": "Invalid maxPages parameter",
                    "message": "maxPages must be a positive integer",
                },
            )

    try:
        firecrawl = _require_client(client)
        discovered = await firecrawl.map_site(url, limit=page_limit)
        crawl = await firecrawl.crawl_site(
            url,
            max_pages=page_limit,
            formats=["markdown", "html"],
            only_main_content=False,
        )
    except Exception as e:
        return failure_response("Failed to deep scrape website", e)

    return {
        "url": url,
        "scrapedAt": utc_iso_now(),
        "data": {
            "discoveredPages": discovered,
            "crawledPages": crawl.pages,
        },
        "summary": {
            "totalDiscoveredPages": len(discovered),
            "totalCrawledPages": crawl.total_pages,
            "maxPages": page_limit,
        },
    }


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors."""
    logger.error(
        "Unhandled error: %s %s - %s",
        request.method,
        request.url.path,
        str(exc),
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "message": str(exc) if config.DEBUG else "An unexpected error occurred",
            "details": None,
        },
    )


def run() -> None:
    """Console entry point: serve the scraper with uvicorn."""
    import uvicorn

    setup_logging(config.LOG_LEVEL, service_name="scrape-service")
    logger.info(
        "Starting scraper service on %s:%d", config.SCRAPER_HOST, config.SCRAPER_PORT
    )
    uvicorn.run(
        "scrape_service.main:app",
        host=config.SCRAPER_HOST,
        port=config.SCRAPER_PORT,
    )


if __name__ == "__main__":
    run()
