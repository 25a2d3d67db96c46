"""Leadflow Database Models.

This module contains SQLAlchemy models for the leadflow backend.
"""

from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime (the stored form)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value: datetime | None) -> str | None:
    """Serialize an optional timestamp for ``to_dict`` output."""
    return value.isoformat() if value else None


# Import models to register them with Base metadata
from .user import User
from .company import Company
from .lead import Lead, LeadStatus
from .chat import (
    ChatLink,
    ChatLinkStatus,
    ChatMessage,
    ChatSession,
    ChatSessionStatus,
    MessageRole,
)
from .job import Job, JobStatus, JobType
from .usage import LimitPeriod, LimitType, UsageEvent, UsageMeter, UsageRule

# Import database utilities
from .database import (
    DatabaseManager,
    get_db_session,
    get_db,
    init_database,
    close_database,
    create_test_engine,
)

__all__ = [
    # Base class
    "Base",
    "utcnow",
    # Models
    "User",
    "Company",
    "Lead",
    "LeadStatus",
    "ChatLink",
    "ChatLinkStatus",
    "ChatSession",
    "ChatSessionStatus",
    "ChatMessage",
    "MessageRole",
    "Job",
    "JobStatus",
    "JobType",
    "UsageEvent",
    "UsageMeter",
    "UsageRule",
    "LimitType",
    "LimitPeriod",
    # Database utilities
    "DatabaseManager",
    "get_db_session",
    "get_db",
    "init_database",
    "close_database",
    "create_test_engine",
]
