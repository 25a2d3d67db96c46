"""Chat link operations: shareable tokens that open a chat about a lead."""

import uuid
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import config
from ..errors import (
    ChatLinkExpiredError,
    InvalidStatusTransitionError,
    NotAuthorizedError,
    NotFoundError,
    ValidationError,
)
from ..logging_utils import get_logger
from ..models import ChatLink, ChatLinkStatus, Company, Lead, utcnow
from .companies import owned_company_ids
from .leads import require_owned_lead

logger = get_logger(__name__)

MAX_EXPIRY_DAYS = 3650


def with_url(link: ChatLink) -> dict[str, Any]:
    return {**link.to_dict(), "url": config.build_chat_url(link.token)}


async def find_by_token(session: AsyncSession, token: str) -> ChatLink:
    result = await session.execute(select(ChatLink).where(ChatLink.token == token))
    link = result.scalar_one_or_none()
    if link is None:
        raise NotFoundError("Chat link not found")
    return link


async def ensure_usable(session: AsyncSession, link: ChatLink) -> None:
    """Reject expired links.

    A link found past its expiry is flipped to ``expired`` and committed
    before the error is raised, so the flip survives the caller's rollback.

    Raises:
        ChatLinkExpiredError: If the link is expired.
    """
    if link.status == ChatLinkStatus.EXPIRED:
        raise ChatLinkExpiredError()

    if link.is_past_expiry():
        link.status = ChatLinkStatus.EXPIRED
        await session.commit()
        logger.info("Chat link %s expired", link.id)
        raise ChatLinkExpiredError()


async def _require_owned_link(
    session: AsyncSession,
    user_id: str,
    link_id: str,
    action: str,
) -> ChatLink:
    link = await session.get(ChatLink, link_id)
    if link is None:
        raise NotFoundError("Chat link not found")
    company = await session.get(Company, link.company_id)
    if company is None or company.user_id != user_id:
        raise NotAuthorizedError(f"Not authorized to {action} this link")
    return link


async def generate(
    session: AsyncSession,
    user_id: str,
    lead_id: str,
    expires_in_days: Optional[float] = None,
) -> dict[str, Any]:
    """Create an active link for a lead; no expiry unless ``expires_in_days``."""
    lead, _ = await require_owned_lead(session, user_id, lead_id, "create links for")

    if expires_in_days is not None and expires_in_days <= 0:
        raise ValidationError("expires_in_days must be positive")
    if expires_in_days is not None and expires_in_days > MAX_EXPIRY_DAYS:
        raise ValidationError(f"expires_in_days must be at most {MAX_EXPIRY_DAYS}")

    expires_at = None
    if expires_in_days:
        expires_at = utcnow() + timedelta(days=expires_in_days)

    link = ChatLink(
        lead_id=lead.id,
        company_id=lead.company_id,
        token=str(uuid.uuid4()),
        status=ChatLinkStatus.ACTIVE,
        expires_at=expires_at,
    )
    session.add(link)
    await session.flush()

    logger.info("Generated chat link %s for lead %s", link.id, lead.id)
    return with_url(link)


async def get_by_token(session: AsyncSession, token: str) -> dict[str, Any]:
    """Public lookup used by the visitor chat page."""
    link = await find_by_token(session, token)
    await ensure_usable(session, link)

    lead = await session.get(Lead, link.lead_id)
    company = await session.get(Company, link.company_id)
    return {
        **link.to_dict(),
        "lead": lead.to_dict() if lead else None,
        "company": company.to_dict() if company else None,
    }


async def get(session: AsyncSession, user_id: str, link_id: str) -> dict[str, Any]:
    link = await _require_owned_link(session, user_id, link_id, "view")
    lead = await session.get(Lead, link.lead_id)
    return {**with_url(link), "lead": lead.to_dict() if lead else None}


async def list_by_lead(
    session: AsyncSession,
    user_id: str,
    lead_id: str,
) -> list[dict[str, Any]]:
    await require_owned_lead(session, user_id, lead_id, "view links for")
    result = await session.execute(
        select(ChatLink)
        .where(ChatLink.lead_id == lead_id)
        .order_by(ChatLink.created_at.desc())
    )
    return [with_url(link) for link in result.scalars().all()]


async def list_links(
    session: AsyncSession,
    user_id: str,
    status: Optional[ChatLinkStatus] = None,
) -> list[dict[str, Any]]:
    company_ids = await owned_company_ids(session, user_id)
    if not company_ids:
        return []

    query = select(ChatLink).where(ChatLink.company_id.in_(company_ids))
    if status is not None:
        query = query.where(ChatLink.status == ChatLinkStatus(status))

    result = await session.execute(query.order_by(ChatLink.created_at.desc()))
    return [with_url(link) for link in result.scalars().all()]


async def update_status(
    session: AsyncSession,
    user_id: str,
    link_id: str,
    status: ChatLinkStatus,
) -> ChatLink:
    link = await _require_owned_link(session, user_id, link_id, "update")
    status = ChatLinkStatus(status)
    if not link.status.can_transition_to(status):
        raise InvalidStatusTransitionError("chat link", link.status.value, status.value)
    link.status = status
    await session.flush()
    return link


async def mark_accessed(session: AsyncSession, token: str) -> dict[str, bool]:
    link = await find_by_token(session, token)
    link.last_accessed_at = utcnow()
    await session.flush()
    return {"success": True}
