# logging_utils.py
"""Logging setup for the leadflow API, worker and scraper processes.

Records carry an optional context (job id, lead id, ...) bound with
``log_context``. Production processes log one JSON object per line;
development processes log a colored single-line format.
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from .config import config

_context: ContextVar[Dict[str, Any]] = ContextVar("leadflow_log_context", default={})

# LogRecord attributes that are not user data
_RECORD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message", "asctime", "context",
}

NOISY_LOGGERS = (
    "urllib3",
    "requests",
    "httpx",
    "httpcore",
    "firecrawl",
    "sqlalchemy.engine",
    "uvicorn.access",
)


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Attach ``fields`` to every record logged inside the block.

    Contexts nest; inner values win. ``None`` values are dropped.

    Example:
        >>> with log_context(job_id=job.id, lead_id=job.lead_id):
        ...     logger.info("Scraping lead")
    """
    merged = {**_context.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _context.set(merged)
    try:
        yield
    finally:
        _context.reset(token)


class ContextFilter(logging.Filter):
    """Copies the bound log context onto each record as ``record.context``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.context = dict(_context.get())
        return True


def _utc_timestamp(created: float) -> str:
    moment = datetime.fromtimestamp(created, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


class StructuredFormatter(logging.Formatter):
    """One JSON object per record.

    Keys: ``timestamp``, ``level``, ``service``, ``logger``, ``message``,
    ``source``, plus ``context``, ``extra`` and ``exception`` when present.
    """

    def __init__(self, service_name: str = "leadflow-api"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": _utc_timestamp(record.created),
            "level": record.levelname,
            "service": self.service_name,
            "logger": record.name,
            "message": record.getMessage(),
            "source": f"{record.module}:{record.lineno}",
        }

        context = getattr(record, "context", None)
        if context:
            entry["context"] = context

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }
        if extra:
            entry["extra"] = extra

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger: message [key=value ...]`` for terminals."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: Optional[bool] = None):
        super().__init__()
        self.use_colors = sys.stdout.isatty() if use_colors is None else use_colors

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:8}"
        if self.use_colors:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"

        line = (
            f"{datetime.fromtimestamp(record.created).strftime('%H:%M:%S')} "
            f"{level} {record.name}: {record.getMessage()}"
        )

        context = getattr(record, "context", None)
        if context:
            line += " [" + " ".join(f"{k}={v}" for k, v in context.items()) + "]"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    level: Optional[str] = None,
    structured: Optional[bool] = None,
    service_name: str = "leadflow-api",
) -> logging.Logger:
    """Configure the root logger for a leadflow process.

    Args:
        level: Level name; defaults to ``config.LOG_LEVEL``.
        structured: JSON output. Defaults to on outside development.
        service_name: Value of the ``service`` key in JSON records.

    Returns:
        The ``leadflow`` package logger.
    """
    log_level = getattr(logging, (level or config.LOG_LEVEL).upper(), logging.INFO)
    if structured is None:
        structured = not config.is_development()

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter())
    handler.setFormatter(
        StructuredFormatter(service_name) if structured else HumanReadableFormatter()
    )

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(log_level)

    library_level = logging.WARNING if log_level > logging.DEBUG else log_level
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    logger = logging.getLogger("leadflow")
    logger.debug(
        "Logging configured",
        extra={"level": logging.getLevelName(log_level), "structured": structured},
    )
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger in the leadflow namespace.

    Args:
        name: Logger name, usually ``__name__``. Prefixed with ``leadflow.``
            unless it already starts with it.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Worker started")
    """
    if not name.startswith("leadflow"):
        name = f"leadflow.{name}"
    return logging.getLogger(name)
