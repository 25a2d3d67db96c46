"""User SQLAlchemy model mirroring identities from the auth provider."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from . import Base, isoformat, utcnow


class User(Base):
    """A product user.

    The primary key is the subject id issued by the upstream auth provider,
    so records are created on first sight rather than by a signup flow.

    Attributes:
        id: Auth provider subject id.
        name: Display name.
        email: Account email, used to find the Polar customer.
        polar_customer_id: Linked Polar customer for usage billing.
        subscription_tier: Current plan tier (free, pro, team, enterprise).
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    polar_customer_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        index=True,
        comment="Polar customer id for usage ingestion"
    )
    subscription_tier: Mapped[str] = mapped_column(
        String(32), nullable=False, default="free"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id!r}, email={self.email!r})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "polar_customer_id": self.polar_customer_id,
            "subscription_tier": self.subscription_tier,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
