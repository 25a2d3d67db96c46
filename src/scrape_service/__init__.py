"""Standalone Firecrawl-backed company scraping service."""
