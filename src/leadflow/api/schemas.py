"""Request bodies for the backend API."""

from typing import Any, Optional

from pydantic import BaseModel, Field

from ..models import ChatLinkStatus, ChatSessionStatus, LeadStatus, MessageRole
from ..services.chat_links import MAX_EXPIRY_DAYS


class UserSync(BaseModel):
    """Identity details forwarded from the auth provider."""

    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)


class CompanyCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None


class CompanyDetails(BaseModel):
    industry: Optional[str] = None
    url: Optional[str] = None


class CompanyUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    details: Optional[CompanyDetails] = None


class LeadCreate(BaseModel):
    company_id: str
    url: str = Field(..., min_length=1)
    title: Optional[str] = None
    description: Optional[str] = None


class LeadUpdate(BaseModel):
    url: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[LeadStatus] = None
    knowledge_base: Optional[str] = None
    error_message: Optional[str] = None


class ChatLinkCreate(BaseModel):
    lead_id: str
    expires_in_days: Optional[float] = Field(None, gt=0, le=MAX_EXPIRY_DAYS)


class ChatLinkStatusUpdate(BaseModel):
    status: ChatLinkStatus


class ChatSessionCreate(BaseModel):
    """Opened by a visitor; ``token`` comes from the chat link URL."""

    token: str
    visitor_name: Optional[str] = None
    visitor_email: Optional[str] = None


class ChatMessageCreate(BaseModel):
    role: MessageRole
    content: str
    audio_storage_id: Optional[str] = None


class ChatSessionStatusUpdate(BaseModel):
    status: ChatSessionStatus


class UsageEventCreate(BaseModel):
    event_type: str
    metric_type: str
    amount: float = Field(1, ge=0)
    feature: Optional[str] = None
    endpoint: Optional[str] = None
    method: Optional[str] = None
    request_id: Optional[str] = None
    session_id: Optional[str] = None
    status_code: Optional[int] = None
    response_time_ms: Optional[float] = None
    error_message: Optional[str] = None
    cost: Optional[float] = None
    currency: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
