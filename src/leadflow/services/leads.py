"""Lead operations.

Creating a lead queues a ``scrape_lead`` job in the same transaction, so a
lead is never committed without the work that fills it in.
"""

from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import InvalidStatusTransitionError, NotAuthorizedError, NotFoundError
from ..logging_utils import get_logger
from ..models import (
    ChatLink,
    ChatMessage,
    ChatSession,
    Company,
    Job,
    JobType,
    Lead,
    LeadStatus,
    utcnow,
)
from . import jobs
from .companies import owned_company_ids, require_company

logger = get_logger(__name__)

UPDATABLE_FIELDS = (
    "url",
    "title",
    "description",
    "status",
    "knowledge_base",
    "error_message",
)


def apply_updates(lead: Lead, updates: dict[str, Any]) -> Lead:
    """Patch a lead in place.

    Status only moves forward; re-applying the current status is a no-op.
    ``processed_at`` is stamped when the lead reaches a terminal status.

    Raises:
        InvalidStatusTransitionError: If the status would move backwards.
    """
    unknown = set(updates) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown lead fields: {', '.join(sorted(unknown))}")

    status = updates.get("status")
    if status is not None:
        status = LeadStatus(status)
        if not lead.status.can_transition_to(status):
            raise InvalidStatusTransitionError("lead", lead.status.value, status.value)

    for name, value in updates.items():
        if name == "status" or value is None:
            continue
        setattr(lead, name, value)

    now = utcnow()
    if status is not None and status != lead.status:
        lead.status = status
        if status.is_terminal:
            lead.processed_at = now
        if status == LeadStatus.COMPLETED and "error_message" not in updates:
            lead.error_message = None
    lead.updated_at = now
    return lead


async def require_owned_lead(
    session: AsyncSession,
    user_id: str,
    lead_id: str,
    action: str,
) -> tuple[Lead, Company]:
    """Load a lead and its company, checking the user owns them."""
    lead = await session.get(Lead, lead_id)
    if lead is None:
        raise NotFoundError("Lead not found")
    company = await session.get(Company, lead.company_id)
    if company is None or company.user_id != user_id:
        raise NotAuthorizedError(f"Not authorized to {action} this lead")
    return lead, company


async def create(
    session: AsyncSession,
    user_id: str,
    company_id: str,
    url: str,
    title: Optional[str] = None,
    description: Optional[str] = None,
) -> Lead:
    """Create a pending lead and queue its scrape."""
    await require_company(session, company_id, user_id, "add leads to")

    lead = Lead(
        company_id=company_id,
        url=url,
        title=title,
        description=description,
        status=LeadStatus.PENDING,
    )
    session.add(lead)
    await session.flush()

    await jobs.enqueue(session, JobType.SCRAPE_LEAD, lead_id=lead.id)
    logger.info("Created lead %s for %s", lead.id, url)
    return lead


async def get(session: AsyncSession, user_id: str, lead_id: str) -> dict[str, Any]:
    """Return the lead with its company embedded."""
    lead, company = await require_owned_lead(session, user_id, lead_id, "view")
    return {**lead.to_dict(), "company": company.to_dict()}


async def list_leads(
    session: AsyncSession,
    user_id: str,
    company_id: Optional[str] = None,
    status: Optional[LeadStatus] = None,
) -> list[Lead]:
    """List the caller's leads, newest first."""
    if company_id is not None:
        await require_company(session, company_id, user_id, "view")
        company_ids = [company_id]
    else:
        company_ids = await owned_company_ids(session, user_id)
        if not company_ids:
            return []

    query = select(Lead).where(Lead.company_id.in_(company_ids))
    if status is not None:
        query = query.where(Lead.status == LeadStatus(status))

    result = await session.execute(query.order_by(Lead.created_at.desc()))
    return list(result.scalars().all())


async def update(
    session: AsyncSession,
    user_id: str,
    lead_id: str,
    **updates: Any,
) -> Lead:
    lead, _ = await require_owned_lead(session, user_id, lead_id, "update")
    apply_updates(lead, updates)
    await session.flush()
    return lead


async def remove(session: AsyncSession, user_id: str, lead_id: str) -> dict[str, bool]:
    """Delete a lead together with its chat links, sessions, messages and jobs."""
    lead, _ = await require_owned_lead(session, user_id, lead_id, "delete")

    session_ids = select(ChatSession.id).where(ChatSession.lead_id == lead.id)
    await session.execute(
        delete(ChatMessage).where(ChatMessage.session_id.in_(session_ids))
    )
    await session.execute(delete(ChatSession).where(ChatSession.lead_id == lead.id))
    await session.execute(delete(ChatLink).where(ChatLink.lead_id == lead.id))
    await session.execute(delete(Job).where(Job.lead_id == lead.id))
    await session.delete(lead)
    await session.flush()

    logger.info("Deleted lead %s", lead_id)
    return {"success": True}


async def get_internal(session: AsyncSession, lead_id: str) -> Optional[Lead]:
    """Load a lead without an ownership check (background work only)."""
    return await session.get(Lead, lead_id)


async def update_internal(session: AsyncSession, lead_id: str, **updates: Any) -> Lead:
    """Patch a lead without an ownership check (background work only)."""
    lead = await session.get(Lead, lead_id)
    if lead is None:
        raise NotFoundError("Lead not found")
    apply_updates(lead, updates)
    await session.flush()
    return lead
