"""Usage tracking, limit checks and usage reporting.

Events are recorded locally first; ``leadflow.actions.usage_sync`` forwards
the billable ones to Polar later. An event must fit under both the current
meter's limit (credited by Polar) and the user's tier rule, if any.
"""

import uuid
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import ValidationError
from ..logging_utils import get_logger
from ..models import LimitPeriod, UsageEvent, UsageMeter, utcnow
from . import usage_rules

logger = get_logger(__name__)

STATS_PERIOD_DAYS = {
    "day": 1,
    "week": 7,
    "month": 30,
    "year": 365,
}

WARNING_PERCENT = 90


def month_period(now: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """Return the start of this calendar month and the start of the next."""
    return usage_rules.period_boundaries(LimitPeriod.MONTH, now)


async def get_current_meter(
    session: AsyncSession,
    user_id: str,
    metric_type: str,
    now: Optional[datetime] = None,
    lock: bool = False,
) -> Optional[UsageMeter]:
    """The active meter for this metric whose period contains ``now``.

    With ``lock`` the row is selected ``FOR UPDATE`` and reloaded, so the
    caller can read and increment it without losing concurrent updates.
    """
    now = now or utcnow()
    query = (
        select(UsageMeter)
        .where(
            UsageMeter.user_id == user_id,
            UsageMeter.meter_type == metric_type,
            UsageMeter.is_active.is_(True),
            UsageMeter.period_start <= now,
            UsageMeter.period_end > now,
        )
        .order_by(UsageMeter.period_start.desc())
        .limit(1)
    )
    if lock:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def ensure_month_meter(
    session: AsyncSession,
    user_id: str,
    metric_type: str,
    now: Optional[datetime] = None,
    polar_customer_id: Optional[str] = None,
    polar_meter_id: Optional[str] = None,
) -> None:
    """Create this month's meter unless one already exists.

    Uses ``INSERT ... ON CONFLICT DO NOTHING`` on the
    (user, metric, period start) key, so concurrent first events of a
    month end up sharing one row.
    """
    now = now or utcnow()
    period_start, period_end = month_period(now)
    dialect = session.bind.dialect.name if session.bind is not None else "postgresql"
    insert = sqlite_insert if dialect == "sqlite" else pg_insert

    stmt = insert(UsageMeter).values(
        id=str(uuid.uuid4()),
        user_id=user_id,
        polar_customer_id=polar_customer_id,
        polar_meter_id=polar_meter_id,
        meter_name=metric_type,
        meter_type=metric_type,
        consumed=0,
        balance=0,
        period_start=period_start,
        period_end=period_end,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    await session.execute(
        stmt.on_conflict_do_nothing(
            index_elements=["user_id", "meter_type", "period_start"]
        )
    )


async def _evaluate(
    session: AsyncSession,
    user_id: str,
    metric_type: str,
    amount: float,
    feature: Optional[str],
    meter: Optional[UsageMeter],
    now: datetime,
) -> dict[str, Any]:
    remaining: Optional[float] = None
    reason: Optional[str] = None
    overage_cost: Optional[float] = None

    if meter is not None and meter.limit is not None:
        left = max(meter.limit - meter.consumed, 0)
        if meter.consumed + amount > meter.limit:
            label = f"{metric_type} ({feature})" if feature else metric_type
            return {
                "allowed": False,
                "reason": f"Usage limit exceeded for {label}",
                "remaining": left,
            }
        remaining = left - amount
        if meter.limit and (meter.consumed + amount) / meter.limit * 100 >= WARNING_PERCENT:
            logger.warning(
                "User %s is at %.0f%% of the %s limit",
                user_id,
                (meter.consumed + amount) / meter.limit * 100,
                metric_type,
            )

    rule = await usage_rules.get_applicable_rule(session, user_id, metric_type, feature, now)
    if rule is not None:
        period_start, _ = usage_rules.period_boundaries(rule.limit_period, now)
        consumed = await usage_rules.consumed_since(session, user_id, metric_type, period_start)
        verdict = usage_rules.evaluate_rule(rule, consumed, amount)
        if not verdict["allowed"]:
            return {
                "allowed": False,
                "reason": verdict["reason"],
                "remaining": verdict["remaining"],
            }
        if "warning_level" in verdict:
            logger.warning(
                "User %s is at %.0f%% of rule %s",
                user_id, verdict["warning_level"], rule.rule_id,
            )
        reason = verdict["reason"]
        overage_cost = verdict.get("overage_cost")
        remaining = (
            verdict["remaining"] if remaining is None else min(remaining, verdict["remaining"])
        )

    result: dict[str, Any] = {"allowed": True, "reason": reason, "remaining": remaining}
    if overage_cost is not None:
        result["overage_cost"] = overage_cost
    return result


async def check_usage_available(
    session: AsyncSession,
    user_id: str,
    metric_type: str,
    amount: float,
    feature: Optional[str] = None,
) -> dict[str, Any]:
    """Check whether ``amount`` more units fit under the current limits.

    Metrics with neither a limited meter nor a tier rule are always allowed.

    Returns:
        ``{"allowed": bool, "reason": str | None, "remaining": float | None}``,
        plus ``overage_cost`` when a soft rule prices the overage.
    """
    if amount < 0:
        raise ValidationError("amount must not be negative")

    now = utcnow()
    meter = await get_current_meter(session, user_id, metric_type, now)
    return await _evaluate(session, user_id, metric_type, amount, feature, meter, now)


async def track_usage_event(
    session: AsyncSession,
    user_id: str,
    event_type: str,
    metric_type: str,
    amount: float = 1,
    feature: Optional[str] = None,
    endpoint: Optional[str] = None,
    method: Optional[str] = None,
    request_id: Optional[str] = None,
    session_id: Optional[str] = None,
    status_code: Optional[int] = None,
    response_time_ms: Optional[float] = None,
    error_message: Optional[str] = None,
    cost: Optional[float] = None,
    currency: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> UsageEvent:
    """Record a usage event and count it against the current meter.

    The month's meter row is locked for the rest of the transaction, which
    serializes concurrent events of one user and metric.

    Blocked events are still recorded, with ``allowed=False`` and the reason,
    but they are neither billable nor counted.
    """
    if amount < 0:
        raise ValidationError("amount must not be negative")

    now = utcnow()
    meter = await get_current_meter(session, user_id, metric_type, now, lock=True)
    if meter is None:
        await ensure_month_meter(session, user_id, metric_type, now)
        meter = await get_current_meter(session, user_id, metric_type, now, lock=True)

    check = await _evaluate(session, user_id, metric_type, amount, feature, meter, now)
    allowed = check["allowed"]
    if cost is None and check.get("overage_cost") is not None:
        cost = check["overage_cost"]

    event = UsageEvent(
        user_id=user_id,
        event_type=event_type,
        metric_type=metric_type,
        amount=amount,
        feature=feature,
        endpoint=endpoint,
        method=method,
        request_id=request_id,
        session_id=session_id,
        status_code=status_code,
        response_time_ms=response_time_ms,
        error_message=error_message,
        allowed=allowed,
        reason=check["reason"],
        billable=allowed and amount > 0,
        cost=cost,
        currency=currency,
        synced_to_polar=False,
        event_metadata=metadata,
        timestamp=now,
    )
    session.add(event)

    if allowed and meter is not None:
        meter.consumed = (meter.consumed or 0) + amount
        if meter.limit is not None:
            meter.balance = max(meter.limit - meter.consumed, 0)
        meter.last_used_at = now
        meter.updated_at = now
    elif not allowed:
        logger.info("Blocked %s usage for user %s: %s", metric_type, user_id, check["reason"])

    await session.flush()
    return event

async def get_recent_events(
    session: AsyncSession,
    user_id: str,
    limit: int = 100,
    metric_type: Optional[str] = None,
) -> list[UsageEvent]:
    query = select(UsageEvent).where(UsageEvent.user_id == user_id)
    if metric_type:
        query = query.where(UsageEvent.metric_type == metric_type)
    result = await session.execute(
        query.order_by(UsageEvent.timestamp.desc()).limit(limit)
    )
    return list(result.scalars().all())


async def get_usage_history(
    session: AsyncSession,
    user_id: str,
    metric_type: Optional[str] = None,
    days: int = 30,
    limit: int = 100,
) -> list[dict[str, Any]]:
    since = utcnow() - timedelta(days=days)
    query = select(UsageEvent).where(
        UsageEvent.user_id == user_id,
        UsageEvent.timestamp >= since,
    )
    if metric_type:
        query = query.where(UsageEvent.metric_type == metric_type)

    result = await session.execute(
        query.order_by(UsageEvent.timestamp.desc()).limit(limit)
    )
    return [
        {
            "timestamp": event.timestamp.isoformat(),
            "event_type": event.event_type,
            "metric_type": event.metric_type,
            "amount": event.amount,
            "feature": event.feature,
            "allowed": event.allowed,
            "reason": event.reason,
            "cost": event.cost,
        }
        for event in result.scalars().all()
    ]


async def get_usage_stats(
    session: AsyncSession,
    user_id: str,
    period: str = "month",
) -> dict[str, Any]:
    """Aggregate the user's events over a trailing period, per metric."""
    if period not in STATS_PERIOD_DAYS:
        raise ValidationError(
            f"period must be one of {', '.join(STATS_PERIOD_DAYS)}"
        )

    days = STATS_PERIOD_DAYS[period]
    since = utcnow() - timedelta(days=days)
    result = await session.execute(
        select(UsageEvent).where(
            UsageEvent.user_id == user_id,
            UsageEvent.timestamp >= since,
        )
    )
    events = list(result.scalars().all())

    by_type: dict[str, dict[str, float]] = {}
    for event in events:
        stats = by_type.setdefault(
            event.metric_type,
            {"total": 0, "count": 0, "cost": 0, "allowed": 0, "blocked": 0},
        )
        stats["total"] += event.amount
        stats["count"] += 1
        stats["cost"] += event.cost or 0
        if event.allowed:
            stats["allowed"] += 1
        else:
            stats["blocked"] += 1

    metrics = [
        {
            "metric_type": metric_type,
            "total": stats["total"],
            "count": stats["count"],
            "cost": stats["cost"],
            "allowed_count": stats["allowed"],
            "blocked_count": stats["blocked"],
            "daily_average": round(stats["total"] / days),
            "success_rate": stats["allowed"] / stats["count"] * 100,
        }
        for metric_type, stats in by_type.items()
    ]

    return {
        "period": period,
        "since": since.isoformat(),
        "metrics": metrics,
        "total_events": len(events),
        "total_cost": sum(event.cost or 0 for event in events),
    }


async def get_current_usage(session: AsyncSession, user_id: str) -> list[UsageMeter]:
    """Meters whose period has not ended yet."""
    result = await session.execute(
        select(UsageMeter)
        .where(UsageMeter.user_id == user_id, UsageMeter.period_end > utcnow())
        .order_by(UsageMeter.meter_type.asc())
    )
    return list(result.scalars().all())


def _usage_status(percent_used: float, warning_threshold: Optional[float]) -> str:
    if percent_used >= 100:
        return "exceeded"
    if percent_used >= (warning_threshold if warning_threshold is not None else WARNING_PERCENT):
        return "warning"
    return "ok"


async def get_usage_summary(session: AsyncSession, user_id: str) -> dict[str, Any]:
    """Per-metric usage against the user's limits, with warnings.

    Tier rules report usage over their own period; limited meters not
    covered by a rule report this month's meter. A warning is added for
    every metric at or above 90% of its limit.
    """
    now = utcnow()
    tier = await usage_rules.get_user_tier(session, user_id)
    metrics: list[dict[str, Any]] = []

    seen: set[str] = set()
    for rule in await usage_rules.list_rules(session, tier):
        if rule.metric_type in seen or not rule.applies_to(None, now):
            continue
        seen.add(rule.metric_type)
        period_start, _ = usage_rules.period_boundaries(rule.limit_period, now)
        consumed = await usage_rules.consumed_since(
            session, user_id, rule.metric_type, period_start
        )
        percent = consumed / rule.limit_value * 100 if rule.limit_value else 100.0
        metrics.append({
            "metric_type": rule.metric_type,
            "period": rule.limit_period.value,
            "used": consumed,
            "limit": rule.limit_value,
            "remaining": max(rule.limit_value - consumed, 0),
            "percent_used": percent,
            "status": _usage_status(percent, rule.warning_threshold),
            "applied_rule_id": rule.rule_id,
        })

    for meter in await get_current_usage(session, user_id):
        if meter.limit is None or meter.meter_type in seen:
            continue
        seen.add(meter.meter_type)
        percent = meter.consumed / meter.limit * 100 if meter.limit else 100.0
        metrics.append({
            "metric_type": meter.meter_type,
            "period": "month",
            "used": meter.consumed,
            "limit": meter.limit,
            "remaining": max(meter.limit - meter.consumed, 0),
            "percent_used": percent,
            "status": _usage_status(percent, None),
            "applied_rule_id": None,
        })

    warnings = [
        f"{metric['metric_type']} usage is at {metric['percent_used']:.0f}%"
        for metric in metrics
        if metric["percent_used"] >= WARNING_PERCENT
    ]
    return {"tier": tier, "metrics": metrics, "warnings": warnings}
