"""Chat SQLAlchemy models: shareable chat links, visitor sessions and messages."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from . import Base, isoformat, utcnow


class ChatLinkStatus(str, Enum):
    """Lifecycle of a chat link."""

    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"

    def can_transition_to(self, other: "ChatLinkStatus") -> bool:
        if other == self:
            return True
        return _CHAT_LINK_RANK[other] > _CHAT_LINK_RANK[self]


_CHAT_LINK_RANK = {
    ChatLinkStatus.ACTIVE: 0,
    ChatLinkStatus.USED: 1,
    ChatLinkStatus.EXPIRED: 2,
}


class ChatSessionStatus(str, Enum):
    """Lifecycle of a visitor chat session."""

    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

    @property
    def is_ended(self) -> bool:
        return self != ChatSessionStatus.ACTIVE

    def can_transition_to(self, other: "ChatSessionStatus") -> bool:
        if other == self:
            return True
        return self == ChatSessionStatus.ACTIVE


class MessageRole(str, Enum):
    """Author of a chat message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ChatLink(Base):
    """A tokenized URL that lets a visitor open a chat about a lead.

    Attributes:
        id: Unique identifier (UUID).
        lead_id: Lead the conversation is about.
        company_id: Owning company.
        token: Random UUID4 used in the public URL.
        status: active, used or expired.
        expires_at: Optional expiry; past it the link is treated as expired.
        last_accessed_at: Last time a visitor opened the link.
    """

    __tablename__ = "chat_links"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    lead_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("leads.id"), nullable=False, index=True
    )
    company_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("companies.id"), nullable=False, index=True
    )
    token: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        unique=True,
        default=lambda: str(uuid.uuid4())
    )
    status: Mapped[ChatLinkStatus] = mapped_column(
        SQLEnum(ChatLinkStatus, name="chat_link_status"),
        nullable=False,
        default=ChatLinkStatus.ACTIVE,
        index=True
    )

    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    last_accessed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )

    def __repr__(self) -> str:
        return f"<ChatLink(id={self.id!r}, status={self.status.value!r})>"

    def is_past_expiry(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at < (now or utcnow())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "lead_id": self.lead_id,
            "company_id": self.company_id,
            "token": self.token,
            "status": self.status.value,
            "expires_at": isoformat(self.expires_at),
            "created_at": isoformat(self.created_at),
            "last_accessed_at": isoformat(self.last_accessed_at),
        }


class ChatSession(Base):
    """A visitor conversation opened through a chat link."""

    __tablename__ = "chat_sessions"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    chat_link_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("chat_links.id"), nullable=False, index=True
    )
    lead_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("leads.id"), nullable=False, index=True
    )
    company_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("companies.id"), nullable=False, index=True
    )
    status: Mapped[ChatSessionStatus] = mapped_column(
        SQLEnum(ChatSessionStatus, name="chat_session_status"),
        nullable=False,
        default=ChatSessionStatus.ACTIVE,
        index=True
    )

    # Optional visitor identity
    visitor_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    visitor_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<ChatSession(id={self.id!r}, status={self.status.value!r})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "chat_link_id": self.chat_link_id,
            "lead_id": self.lead_id,
            "company_id": self.company_id,
            "status": self.status.value,
            "visitor_info": {
                "name": self.visitor_name,
                "email": self.visitor_email,
            },
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
            "ended_at": isoformat(self.ended_at),
        }


class ChatMessage(Base):
    """A single message within a chat session."""

    __tablename__ = "chat_messages"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("chat_sessions.id"), nullable=False, index=True
    )
    role: Mapped[MessageRole] = mapped_column(
        SQLEnum(MessageRole, name="message_role"),
        nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)

    # Voice replies are stored out of band; only the reference lives here
    has_audio: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    audio_storage_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, index=True
    )

    def __repr__(self) -> str:
        return f"<ChatMessage(id={self.id!r}, role={self.role.value!r})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "role": self.role.value,
            "content": self.content,
            "has_audio": self.has_audio,
            "audio_storage_id": self.audio_storage_id,
            "created_at": isoformat(self.created_at),
        }
