"""Timestamp formatting for JSON payloads."""

from datetime import datetime, timezone


def utc_iso_now() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a ``Z`` suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
