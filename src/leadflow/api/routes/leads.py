"""Lead routes."""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ...models import LeadStatus
from ...services import leads
from ..deps import get_current_user_id, get_db
from ..schemas import LeadCreate, LeadUpdate

router = APIRouter(prefix="/leads", tags=["leads"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_lead(
    body: LeadCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Create a lead; its scrape is queued in the same transaction."""
    lead = await leads.create(
        db,
        user_id,
        company_id=body.company_id,
        url=body.url,
        title=body.title,
        description=body.description,
    )
    return lead.to_dict()


@router.get("")
async def list_leads(
    company_id: Optional[str] = Query(None),
    lead_status: Optional[LeadStatus] = Query(None, alias="status"),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    found = await leads.list_leads(db, user_id, company_id=company_id, status=lead_status)
    return [lead.to_dict() for lead in found]


@router.get("/{lead_id}")
async def get_lead(
    lead_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return await leads.get(db, user_id, lead_id)


@router.patch("/{lead_id}")
async def update_lead(
    lead_id: str,
    body: LeadUpdate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    lead = await leads.update(db, user_id, lead_id, **body.model_dump(exclude_none=True))
    return lead.to_dict()


@router.delete("/{lead_id}")
async def delete_lead(
    lead_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, bool]:
    return await leads.remove(db, user_id, lead_id)
