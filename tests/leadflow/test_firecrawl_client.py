"""Tests for the Firecrawl client wrapper.

The ``firecrawl-py`` SDK class is patched, so no network calls are made.
"""

import os
from typing import Optional
from unittest.mock import patch

import pytest
from pydantic import BaseModel

from leadflow.integrations.firecrawl import (
    FirecrawlAuthError,
    FirecrawlClient,
    FirecrawlRateLimitError,
    FirecrawlScrapeError,
    to_plain,
)


@pytest.fixture
def sdk():
    with patch("leadflow.integrations.firecrawl.Firecrawl") as firecrawl_cls:
        yield firecrawl_cls.return_value


@pytest.fixture
def client(sdk):
    return FirecrawlClient(api_key="fc-test", timeout_ms=5000)


class _Document(BaseModel):
    markdown: str
    title: Optional[str] = None


class TestClientSetup:
    """Construction and API key handling."""

    def test_missing_api_key(self):
        """Test that a client without any key refuses to start."""
        env = {k: v for k, v in os.environ.items() if k != "FIRECRAWL_API_KEY"}
        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(ValueError, match="API key required"):
                FirecrawlClient()

    def test_key_from_environment(self, sdk):
        """Test that FIRECRAWL_API_KEY is used when no key is passed."""
        with patch.dict(os.environ, {"FIRECRAWL_API_KEY": "fc-env"}):
            client = FirecrawlClient()
        assert client.api_key == "fc-env"
        assert client.timeout_ms == 30000


class TestToPlain:
    """SDK model normalisation."""

    def test_models_and_containers(self):
        """Test that nested pydantic models become dicts without None fields."""
        value = {"docs": [_Document(markdown="# Hi")], "count": 1}
        assert to_plain(value) == {"docs": [{"markdown": "# Hi"}], "count": 1}


class TestScrape:
    """scrape_url."""

    @pytest.mark.asyncio
    async def test_scrape_parses_document(self, client, sdk):
        """Test markdown, metadata and link normalisation."""
        sdk.scrape.return_value = {
            "markdown": "# Acme builds robots",
            "metadata": {"title": "Acme", "sourceURL": "https://acme.example.com"},
            "links": ["https://acme.example.com/about", {"url": "https://acme.example.com/jobs"}],
        }

        result = await client.scrape_url("https://acme.example.com", formats=["markdown", "links"])

        assert result.success is True
        assert result.metadata["title"] == "Acme"
        assert result.links == [
            "https://acme.example.com/about",
            "https://acme.example.com/jobs",
        ]
        kwargs = sdk.scrape.call_args.kwargs
        assert kwargs["formats"] == ["markdown", "links"]
        assert kwargs["only_main_content"] is True
        assert kwargs["timeout"] == 5000

    @pytest.mark.asyncio
    async def test_render_options_passed_through(self, client, sdk):
        """Test include_tags and wait_for as the scraper service sends them."""
        sdk.scrape.return_value = {"markdown": "x"}

        await client.scrape_url(
            "https://acme.example.com", only_main_content=False, include_tags=["h1"], wait_for=2000
        )

        kwargs = sdk.scrape.call_args.kwargs
        assert kwargs["include_tags"] == ["h1"]
        assert kwargs["wait_for"] == 2000
        assert kwargs["only_main_content"] is False

    @pytest.mark.asyncio
    async def test_metadata_from_top_level_fields(self, client, sdk):
        """Test that title/description fall back to top-level fields."""
        sdk.scrape.return_value = _Document(markdown="text", title="Top Level")

        result = await client.scrape_url("https://acme.example.com")

        assert result.metadata == {"title": "Top Level"}

    @pytest.mark.asyncio
    async def test_empty_response(self, client, sdk):
        """Test that an empty SDK response becomes a failed result."""
        sdk.scrape.return_value = None

        result = await client.scrape_url("https://acme.example.com")

        assert result.success is False
        assert result.error == "Empty response from Firecrawl API"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "message,error_cls",
        [
            ("401 Unauthorized", FirecrawlAuthError),
            ("Status 429: rate limit hit", FirecrawlRateLimitError),
            ("Connection reset", FirecrawlScrapeError),
        ],
    )
    async def test_error_categories(self, client, sdk, message, error_cls):
        """Test that SDK errors are mapped to client exceptions."""
        sdk.scrape.side_effect = Exception(message)

        with pytest.raises(error_cls):
            await client.scrape_url("https://acme.example.com")


class TestMapAndCrawl:
    """map_site and crawl_site."""

    @pytest.mark.asyncio
    async def test_map_site(self, client, sdk):
        """Test that map links are flattened to URLs."""
        sdk.map.return_value = {"links": [{"url": "https://a.example.com"}, "https://b.example.com"]}

        urls = await client.map_site("https://a.example.com", limit=5)

        assert urls == ["https://a.example.com", "https://b.example.com"]
        sdk.map.assert_called_once_with("https://a.example.com", limit=5)

    @pytest.mark.asyncio
    async def test_crawl_site(self, client, sdk):
        """Test page collection and the crawl options sent to the SDK."""
        sdk.crawl.return_value = {
            "status": "completed",
            "data": [{"markdown": "home"}, {"markdown": "about"}],
        }

        result = await client.crawl_site("https://a.example.com", max_pages=2)

        assert result.total_pages == 2
        kwargs = sdk.crawl.call_args.kwargs
        assert kwargs["limit"] == 2
        assert kwargs["scrape_options"] == {"formats": ["markdown"], "only_main_content": True}


class TestExtract:
    """LLM extraction."""

    @pytest.mark.asyncio
    async def test_extract(self, client, sdk):
        """Test that extracted data and warnings are returned."""
        sdk.extract.return_value = {
            "success": True,
            "data": {"company_name": "Acme"},
            "warning": "partial",
        }

        result = await client.extract(["https://a.example.com"], {"type": "object"}, "Get it")

        assert result.to_dict() == {
            "data": {"company_name": "Acme"},
            "success": True,
            "warning": "partial",
        }
        sdk.extract.assert_called_once_with(
            ["https://a.example.com"], schema={"type": "object"}, prompt="Get it"
        )

    @pytest.mark.asyncio
    async def test_extract_reported_failure(self, client, sdk):
        """Test that success=False with an error raises."""
        sdk.extract.return_value = {"success": False, "error": "Blocked by robots.txt"}

        with pytest.raises(FirecrawlScrapeError, match="robots"):
            await client.extract(["https://a.example.com"], {"type": "object"})
