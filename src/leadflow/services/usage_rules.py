"""Tier-based usage rules.

A rule caps one metric for one subscription tier over a period. Hard rules
block once the limit is reached; soft rules either allow overage (priced per
unit) or tolerate a grace amount before blocking.
"""

from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import NotFoundError
from ..logging_utils import get_logger
from ..models import (
    LimitPeriod,
    LimitType,
    UsageEvent,
    UsageRule,
    User,
    utcnow,
)

logger = get_logger(__name__)

DEFAULT_TIER = "free"

DEFAULT_RULES: list[dict[str, Any]] = [
    {
        "rule_id": "free_api_calls",
        "name": "API Calls - Free Tier",
        "metric_type": "api_calls",
        "tier_level": "free",
        "limit_type": LimitType.HARD,
        "limit_value": 1000,
        "limit_period": LimitPeriod.MONTH,
        "warning_threshold": 80,
        "description": "1,000 API calls per month for free users",
    },
    {
        "rule_id": "free_ai_tokens",
        "name": "AI Tokens - Free Tier",
        "metric_type": "ai_tokens",
        "tier_level": "free",
        "limit_type": LimitType.HARD,
        "limit_value": 10000,
        "limit_period": LimitPeriod.MONTH,
        "warning_threshold": 75,
        "description": "10,000 AI tokens per month for free users",
    },
    {
        "rule_id": "free_email_sends",
        "name": "Email Sends - Free Tier",
        "metric_type": "email_sends",
        "tier_level": "free",
        "limit_type": LimitType.HARD,
        "limit_value": 10,
        "limit_period": LimitPeriod.DAY,
        "warning_threshold": 70,
        "description": "10 emails per day for free users",
    },
    {
        "rule_id": "pro_api_calls",
        "name": "API Calls - Pro Tier",
        "metric_type": "api_calls",
        "tier_level": "pro",
        "limit_type": LimitType.SOFT,
        "limit_value": 50000,
        "limit_period": LimitPeriod.MONTH,
        "warning_threshold": 80,
        "grace_period": 5000,
        "overage_allowed": True,
        "overage_price_per_unit": 0.0001,
        "description": "50,000 API calls per month, overage billed",
    },
    {
        "rule_id": "pro_ai_tokens",
        "name": "AI Tokens - Pro Tier",
        "metric_type": "ai_tokens",
        "tier_level": "pro",
        "limit_type": LimitType.SOFT,
        "limit_value": 500000,
        "limit_period": LimitPeriod.MONTH,
        "warning_threshold": 75,
        "overage_allowed": True,
        "overage_price_per_unit": 0.00002,
        "description": "500,000 AI tokens per month, overage billed",
    },
    {
        "rule_id": "team_api_calls",
        "name": "API Calls - Team Tier",
        "metric_type": "api_calls",
        "tier_level": "team",
        "limit_type": LimitType.SOFT,
        "limit_value": 500000,
        "limit_period": LimitPeriod.MONTH,
        "warning_threshold": 85,
        "grace_period": 50000,
        "overage_allowed": True,
        "overage_price_per_unit": 0.00008,
        "description": "500,000 API calls per month, overage billed",
    },
]


def period_boundaries(period: LimitPeriod, now: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """Start and end of the ``period`` window containing ``now``.

    Weeks start on Sunday. ``lifetime`` spans from the epoch to 2100.
    """
    now = now or utcnow()
    if period == LimitPeriod.MINUTE:
        start = now.replace(second=0, microsecond=0)
        return start, start + timedelta(minutes=1)
    if period == LimitPeriod.HOUR:
        start = now.replace(minute=0, second=0, microsecond=0)
        return start, start + timedelta(hours=1)
    if period == LimitPeriod.WEEK:
        day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        start = day - timedelta(days=(now.weekday() + 1) % 7)
        return start, start + timedelta(days=7)
    if period == LimitPeriod.MONTH:
        start = datetime(now.year, now.month, 1)
        if now.month == 12:
            return start, datetime(now.year + 1, 1, 1)
        return start, datetime(now.year, now.month + 1, 1)
    if period == LimitPeriod.YEAR:
        return datetime(now.year, 1, 1), datetime(now.year + 1, 1, 1)
    if period == LimitPeriod.LIFETIME:
        return datetime(1970, 1, 1), datetime(2100, 1, 1)

    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def evaluate_rule(rule: UsageRule, consumed: float, amount: float) -> dict[str, Any]:
    """Decide whether ``amount`` more units fit under ``rule``.

    Returns:
        ``allowed``, ``reason``, ``remaining``, ``rule_id`` and, when
        relevant, ``warning_level`` (percent of the limit) and
        ``overage_cost``.
    """
    limit = rule.limit_value
    projected = consumed + amount
    verdict: dict[str, Any] = {
        "allowed": True,
        "reason": None,
        "remaining": max(limit - projected, 0),
        "rule_id": rule.rule_id,
    }

    if projected <= limit:
        percent = projected / limit * 100 if limit else 100
        if rule.warning_threshold is not None and percent >= rule.warning_threshold:
            verdict["warning_level"] = percent
        return verdict

    if rule.limit_type == LimitType.SOFT:
        if rule.overage_allowed:
            verdict["reason"] = "Soft limit exceeded, overage charges may apply"
            verdict["warning_level"] = 100
            if rule.overage_price_per_unit:
                overage = projected - max(consumed, limit)
                verdict["overage_cost"] = overage * rule.overage_price_per_unit
            return verdict
        if rule.grace_period and projected <= limit + rule.grace_period:
            verdict["reason"] = "In grace period"
            verdict["warning_level"] = 100
            return verdict

    return {
        "allowed": False,
        "reason": f"{rule.name} limit exceeded ({consumed:g}/{limit:g})",
        "remaining": max(limit - consumed, 0),
        "rule_id": rule.rule_id,
    }


async def get_user_tier(session: AsyncSession, user_id: str) -> str:
    user = await session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user.subscription_tier or DEFAULT_TIER


async def list_rules(
    session: AsyncSession,
    tier_level: str,
    metric_type: Optional[str] = None,
) -> list[UsageRule]:
    """Active rules for a tier, highest priority first."""
    query = select(UsageRule).where(
        UsageRule.tier_level == tier_level,
        UsageRule.is_active.is_(True),
    )
    if metric_type is not None:
        query = query.where(UsageRule.metric_type == metric_type)
    result = await session.execute(
        query.order_by(UsageRule.priority.desc(), UsageRule.rule_id.asc())
    )
    return list(result.scalars().all())


async def get_applicable_rule(
    session: AsyncSession,
    user_id: str,
    metric_type: str,
    feature: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[UsageRule]:
    """The highest-priority rule in effect for the user's tier, or None."""
    now = now or utcnow()
    tier = await get_user_tier(session, user_id)
    for rule in await list_rules(session, tier, metric_type):
        if rule.applies_to(feature, now):
            return rule
    return None


async def consumed_since(
    session: AsyncSession,
    user_id: str,
    metric_type: str,
    since: datetime,
) -> float:
    """Sum of allowed event amounts for the metric from ``since`` on."""
    result = await session.execute(
        select(func.coalesce(func.sum(UsageEvent.amount), 0)).where(
            UsageEvent.user_id == user_id,
            UsageEvent.metric_type == metric_type,
            UsageEvent.allowed.is_(True),
            UsageEvent.timestamp >= since,
        )
    )
    return float(result.scalar_one())


async def seed_default_rules(session: AsyncSession) -> int:
    """Insert any ``DEFAULT_RULES`` missing by ``rule_id``.

    Returns:
        Number of rules created.
    """
    result = await session.execute(select(UsageRule.rule_id))
    existing = set(result.scalars().all())

    created = 0
    for values in DEFAULT_RULES:
        if values["rule_id"] in existing:
            continue
        session.add(UsageRule(**values))
        created += 1

    await session.flush()
    if created:
        logger.info("Seeded %d default usage rules", created)
    return created
