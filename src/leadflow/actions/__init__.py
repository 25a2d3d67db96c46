"""Background actions: lead scraping and Polar usage sync."""

from .scrape_company import scrape_and_update_lead
from .usage_sync import PolarUsageSync

__all__ = ["scrape_and_update_lead", "PolarUsageSync"]
