"""Company SQLAlchemy model: the owning workspace for leads."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from . import Base, isoformat, utcnow


class Company(Base):
    """A user's company. Leads, chat links and chat sessions hang off it.

    Attributes:
        id: Unique identifier (UUID).
        user_id: Owning user.
        name: Company name.
        description: Free-form description.
        industry: Industry detail.
        url: Company website detail.
    """

    __tablename__ = "companies"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id"), nullable=False, index=True
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    industry: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<Company(id={self.id!r}, name={self.name!r})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "description": self.description,
            "details": {
                "industry": self.industry,
                "url": self.url,
            },
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
