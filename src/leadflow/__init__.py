"""Leadflow Backend Service.

This package provides the backend for a lead management and sales outreach
product: companies and their leads, scraped company profiles, tokenized chat
links for prospects, chat sessions, usage metering and usage sync to Polar.
"""

__version__ = "0.1.0"
