"""Shared helpers for leadflow."""

from .retry import retry_with_backoff
from .timestamps import utc_iso_now

__all__ = ["retry_with_backoff", "utc_iso_now"]
