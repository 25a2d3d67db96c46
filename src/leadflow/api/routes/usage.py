"""Usage metering routes."""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ...services import usage, usage_rules
from ..deps import get_current_user_id, get_db
from ..schemas import UsageEventCreate

router = APIRouter(prefix="/usage", tags=["usage"])


@router.post("/events", status_code=status.HTTP_201_CREATED)
async def track_usage_event(
    body: UsageEventCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    event = await usage.track_usage_event(db, user_id, **body.model_dump())
    return {
        "success": True,
        "event_id": event.event_id,
        "allowed": event.allowed,
        "reason": event.reason,
    }


@router.get("/check")
async def check_usage_available(
    metric_type: str = Query(...),
    amount: float = Query(1, ge=0),
    feature: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return await usage.check_usage_available(db, user_id, metric_type, amount, feature)


@router.get("/events")
async def get_recent_events(
    limit: int = Query(100, ge=1, le=1000),
    metric_type: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    events = await usage.get_recent_events(db, user_id, limit, metric_type)
    return [e.to_dict() for e in events]


@router.get("/history")
async def get_usage_history(
    metric_type: Optional[str] = Query(None),
    days: int = Query(30, ge=1),
    limit: int = Query(100, ge=1, le=1000),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    return await usage.get_usage_history(db, user_id, metric_type, days, limit)


@router.get("/stats")
async def get_usage_stats(
    period: str = Query("month"),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return await usage.get_usage_stats(db, user_id, period)


@router.get("/current")
async def get_current_usage(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    return [m.to_dict() for m in await usage.get_current_usage(db, user_id)]


@router.get("/summary")
async def get_usage_summary(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return await usage.get_usage_summary(db, user_id)


@router.get("/rules")
async def list_usage_rules(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    tier = await usage_rules.get_user_tier(db, user_id)
    return [rule.to_dict() for rule in await usage_rules.list_rules(db, tier)]
