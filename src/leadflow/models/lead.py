"""Lead SQLAlchemy model for storing scraped company profiles."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Enum as SQLEnum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from . import Base, isoformat, utcnow


class LeadStatus(str, Enum):
    """Crawling status of a lead."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _LEAD_STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in (LeadStatus.COMPLETED, LeadStatus.FAILED)

    def can_transition_to(self, other: "LeadStatus") -> bool:
        """Statuses only move forward; re-applying the current one is allowed."""
        if other == self:
            return True
        return other.rank > self.rank


_LEAD_STATUS_RANK = {
    LeadStatus.PENDING: 0,
    LeadStatus.PROCESSING: 1,
    LeadStatus.COMPLETED: 2,
    LeadStatus.FAILED: 2,
}


class Lead(Base):
    """SQLAlchemy model representing a lead: a prospect's website to profile.

    The scrape action fills ``title``, ``description`` and ``knowledge_base``
    from the Firecrawl extraction of ``url``.

    Attributes:
        id: Unique identifier for the lead (UUID).
        company_id: Owning company.
        url: Prospect website URL.
        status: Crawling status.
        title: Company name or page title.
        description: Short description of the prospect.
        knowledge_base: JSON document with the extracted company profile.
        error_message: Last scrape error, when status is failed.
        processed_at: When the lead reached a terminal status.
    """

    __tablename__ = "leads"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    company_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("companies.id"), nullable=False, index=True
    )

    url: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[LeadStatus] = mapped_column(
        SQLEnum(LeadStatus, name="lead_status"),
        nullable=False,
        default=LeadStatus.PENDING,
        index=True
    )

    # Extracted data
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    knowledge_base: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="JSON document with the extracted company profile"
    )

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )

    def __repr__(self) -> str:
        """Return string representation of the lead."""
        return f"<Lead(id={self.id!r}, url={self.url!r}, status={self.status.value!r})>"

    def to_dict(self) -> dict:
        """Convert lead to dictionary representation."""
        return {
            "id": self.id,
            "company_id": self.company_id,
            "url": self.url,
            "status": self.status.value,
            "title": self.title,
            "description": self.description,
            "knowledge_base": self.knowledge_base,
            "error_message": self.error_message,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
            "processed_at": isoformat(self.processed_at),
        }
