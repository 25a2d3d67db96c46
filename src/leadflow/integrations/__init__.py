"""Clients for Firecrawl (scraping) and Polar (usage billing).

Both are resolved on first attribute access so importing the package does
not import either SDK.
"""

from importlib import import_module
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .firecrawl import FirecrawlClient
    from .polar import PolarClient

_LAZY = {
    "FirecrawlClient": ".firecrawl",
    "PolarClient": ".polar",
}


def __getattr__(name: str):
    if name not in _LAZY:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    return getattr(import_module(_LAZY[name], __name__), name)


__all__ = list(_LAZY)
