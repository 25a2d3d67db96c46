"""Visitor chat sessions and their messages.

Session creation and messaging are public: visitors arrive through a chat
link token and are not users of the product.
"""

from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import (
    InvalidStatusTransitionError,
    NotAuthorizedError,
    NotFoundError,
    SessionInactiveError,
)
from ..logging_utils import get_logger
from ..models import (
    ChatLinkStatus,
    ChatMessage,
    ChatSession,
    ChatSessionStatus,
    Company,
    Lead,
    MessageRole,
    utcnow,
)
from .chat_links import ensure_usable, find_by_token
from .companies import owned_company_ids

logger = get_logger(__name__)


async def _get_chat(session: AsyncSession, session_id: str) -> ChatSession:
    chat = await session.get(ChatSession, session_id)
    if chat is None:
        raise NotFoundError("Session not found")
    return chat


def _set_status(chat: ChatSession, status: ChatSessionStatus) -> None:
    if not chat.status.can_transition_to(status):
        raise InvalidStatusTransitionError(
            "chat session", chat.status.value, status.value
        )
    if status == chat.status:
        return
    now = utcnow()
    chat.status = status
    chat.updated_at = now
    if status.is_ended:
        chat.ended_at = now


async def create_session(
    session: AsyncSession,
    token: str,
    visitor_name: Optional[str] = None,
    visitor_email: Optional[str] = None,
) -> ChatSession:
    """Open a session through a chat link and mark the link used."""
    link = await find_by_token(session, token)
    await ensure_usable(session, link)

    chat = ChatSession(
        chat_link_id=link.id,
        lead_id=link.lead_id,
        company_id=link.company_id,
        status=ChatSessionStatus.ACTIVE,
        visitor_name=visitor_name,
        visitor_email=visitor_email,
    )
    session.add(chat)

    if link.status.can_transition_to(ChatLinkStatus.USED):
        link.status = ChatLinkStatus.USED
    link.last_accessed_at = utcnow()

    await session.flush()
    logger.info("Opened chat session %s via link %s", chat.id, link.id)
    return chat


async def get_session(session: AsyncSession, session_id: str) -> dict[str, Any]:
    """Return the session with its company and lead for the chat page."""
    chat = await _get_chat(session, session_id)
    company = await session.get(Company, chat.company_id)
    lead = await session.get(Lead, chat.lead_id)
    return {
        **chat.to_dict(),
        "company": company.to_dict() if company else None,
        "lead": lead.to_dict() if lead else None,
    }


async def add_message(
    session: AsyncSession,
    session_id: str,
    role: MessageRole,
    content: str,
    audio_storage_id: Optional[str] = None,
) -> ChatMessage:
    chat = await _get_chat(session, session_id)
    if chat.status != ChatSessionStatus.ACTIVE:
        raise SessionInactiveError()

    message = ChatMessage(
        session_id=chat.id,
        role=MessageRole(role),
        content=content,
        has_audio=bool(audio_storage_id),
        audio_storage_id=audio_storage_id,
    )
    session.add(message)
    chat.updated_at = utcnow()
    await session.flush()
    return message


async def get_messages(session: AsyncSession, session_id: str) -> list[ChatMessage]:
    """Messages of a session, oldest first."""
    chat = await _get_chat(session, session_id)
    result = await session.execute(
        select(ChatMessage)
        .where(ChatMessage.session_id == chat.id)
        .order_by(ChatMessage.created_at.asc())
    )
    return list(result.scalars().all())


async def list_sessions_by_lead(
    session: AsyncSession,
    user_id: str,
    lead_id: str,
) -> list[ChatSession]:
    lead = await session.get(Lead, lead_id)
    if lead is None:
        raise NotFoundError("Lead not found")
    company = await session.get(Company, lead.company_id)
    if company is None or company.user_id != user_id:
        raise NotAuthorizedError("Not authorized to view sessions for this lead")

    result = await session.execute(
        select(ChatSession)
        .where(ChatSession.lead_id == lead_id)
        .order_by(ChatSession.created_at.desc())
    )
    return list(result.scalars().all())


async def list_sessions(
    session: AsyncSession,
    user_id: str,
    status: Optional[ChatSessionStatus] = None,
) -> list[ChatSession]:
    company_ids = await owned_company_ids(session, user_id)
    if not company_ids:
        return []

    query = select(ChatSession).where(ChatSession.company_id.in_(company_ids))
    if status is not None:
        query = query.where(ChatSession.status == ChatSessionStatus(status))

    result = await session.execute(query.order_by(ChatSession.created_at.desc()))
    return list(result.scalars().all())


async def update_session_status(
    session: AsyncSession,
    user_id: str,
    session_id: str,
    status: ChatSessionStatus,
) -> ChatSession:
    chat = await _get_chat(session, session_id)
    company = await session.get(Company, chat.company_id)
    if company is None or company.user_id != user_id:
        raise NotAuthorizedError("Not authorized to update this session")

    _set_status(chat, ChatSessionStatus(status))
    await session.flush()
    return chat


async def end_session(session: AsyncSession, session_id: str) -> dict[str, bool]:
    """Visitor-side close. Ending an already ended session changes nothing."""
    chat = await _get_chat(session, session_id)
    if chat.status == ChatSessionStatus.ACTIVE:
        _set_status(chat, ChatSessionStatus.COMPLETED)
        await session.flush()
    return {"success": True}
