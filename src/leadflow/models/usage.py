"""Usage metering SQLAlchemy models.

``UsageEvent`` rows are the append-only record of billable activity; they are
pushed to Polar by ``leadflow.actions.usage_sync``. ``UsageMeter`` rows hold
running per-period counters, refreshed from Polar's customer meters. ``UsageRule``
rows set the per-tier limits checked before an event is counted.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from . import Base, isoformat, utcnow


class UsageEvent(Base):
    """A single metered action performed by a user.

    Attributes:
        event_id: Client-visible UUID, also the idempotency key sent to Polar.
        event_type: Event name (e.g. ``api_call``, ``lead_scrape``).
        metric_type: Meter the event counts against.
        amount: Units consumed.
        allowed: Whether the event was within the user's limit.
        billable: Whether the event is forwarded to Polar.
        synced_to_polar: Whether Polar has accepted the event.
    """

    __tablename__ = "usage_events"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id"), nullable=False, index=True
    )
    event_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        unique=True,
        default=lambda: str(uuid.uuid4())
    )

    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    metric_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    amount: Mapped[float] = mapped_column(Float, nullable=False, default=1)

    # Request context
    endpoint: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    method: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    feature: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    request_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    status_code: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    response_time_ms: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Limit check outcome
    allowed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Billing
    billable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    cost: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    currency: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)

    # Polar sync
    synced_to_polar: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, index=True
    )
    polar_event_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    polar_synced_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )
    polar_sync_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # "metadata" is reserved on declarative classes
    event_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column(
        "metadata", JSON, nullable=True
    )

    timestamp: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, index=True
    )

    def __repr__(self) -> str:
        return (
            f"<UsageEvent(id={self.id!r}, metric={self.metric_type!r}, "
            f"amount={self.amount})>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "event_id": self.event_id,
            "event_type": self.event_type,
            "metric_type": self.metric_type,
            "amount": self.amount,
            "endpoint": self.endpoint,
            "method": self.method,
            "feature": self.feature,
            "request_id": self.request_id,
            "session_id": self.session_id,
            "status_code": self.status_code,
            "response_time_ms": self.response_time_ms,
            "error_message": self.error_message,
            "allowed": self.allowed,
            "reason": self.reason,
            "billable": self.billable,
            "cost": self.cost,
            "currency": self.currency,
            "synced_to_polar": self.synced_to_polar,
            "polar_event_id": self.polar_event_id,
            "polar_synced_at": isoformat(self.polar_synced_at),
            "polar_sync_error": self.polar_sync_error,
            "metadata": self.event_metadata,
            "timestamp": isoformat(self.timestamp),
        }


class UsageMeter(Base):
    """Running counter of one metric for one user over one period.

    There is at most one meter per user, metric and period start; local
    counting and Polar refreshes share that row.
    """

    __tablename__ = "usage_meters"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "meter_type", "period_start", name="uq_usage_meters_period"
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id"), nullable=False, index=True
    )
    polar_customer_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True
    )
    polar_meter_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, index=True
    )

    meter_name: Mapped[str] = mapped_column(String(128), nullable=False)
    meter_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    consumed: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    balance: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    limit: Mapped[Optional[float]] = mapped_column(
        "usage_limit", Float, nullable=True
    )

    period_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    meter_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column(
        "metadata", JSON, nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )
    last_used_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<UsageMeter(user_id={self.user_id!r}, type={self.meter_type!r}, "
            f"consumed={self.consumed})>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "polar_customer_id": self.polar_customer_id,
            "polar_meter_id": self.polar_meter_id,
            "meter_name": self.meter_name,
            "meter_type": self.meter_type,
            "consumed": self.consumed,
            "balance": self.balance,
            "limit": self.limit,
            "period_start": isoformat(self.period_start),
            "period_end": isoformat(self.period_end),
            "is_active": self.is_active,
            "metadata": self.meter_metadata,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
            "last_used_at": isoformat(self.last_used_at),
        }


class LimitType(str, Enum):
    """How a rule reacts once its limit is reached."""

    HARD = "hard"
    SOFT = "soft"


class LimitPeriod(str, Enum):
    """Window a rule's limit applies to."""

    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    LIFETIME = "lifetime"


class UsageRule(Base):
    """A usage limit for one metric on one subscription tier.

    When several rules match a user, metric and feature, the one with the
    highest ``priority`` wins.

    Attributes:
        rule_id: Stable identifier such as ``free_api_calls``.
        tier_level: Subscription tier the rule applies to.
        limit_type: ``hard`` blocks past the limit; ``soft`` allows overage
            or a grace amount.
        limit_value: Units allowed per ``limit_period``.
        warning_threshold: Percent of the limit that triggers a warning.
        grace_period: Extra units a soft limit tolerates without overage.
        features: When set, the rule only applies to these features.
        excluded_features: Features the rule never applies to.
    """

    __tablename__ = "usage_rules"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    rule_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)

    metric_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    tier_level: Mapped[str] = mapped_column(String(32), nullable=False, index=True)

    limit_type: Mapped[LimitType] = mapped_column(
        SQLEnum(LimitType, name="usage_limit_type"),
        nullable=False,
        default=LimitType.HARD
    )
    limit_value: Mapped[float] = mapped_column(Float, nullable=False)
    limit_period: Mapped[LimitPeriod] = mapped_column(
        SQLEnum(LimitPeriod, name="usage_limit_period"),
        nullable=False,
        default=LimitPeriod.MONTH
    )

    warning_threshold: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    grace_period: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    overage_allowed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    overage_price_per_unit: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    features: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)
    excluded_features: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)

    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    effective_from: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    effective_until: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<UsageRule(rule_id={self.rule_id!r}, limit={self.limit_value})>"

    def applies_to(self, feature: Optional[str], now: datetime) -> bool:
        """Whether the rule covers ``feature`` and is in effect at ``now``."""
        if feature:
            if self.features and feature not in self.features:
                return False
            if self.excluded_features and feature in self.excluded_features:
                return False
        if self.effective_from and self.effective_from > now:
            return False
        if self.effective_until and self.effective_until < now:
            return False
        return True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "name": self.name,
            "metric_type": self.metric_type,
            "tier_level": self.tier_level,
            "limit_type": self.limit_type.value,
            "limit_value": self.limit_value,
            "limit_period": self.limit_period.value,
            "warning_threshold": self.warning_threshold,
            "grace_period": self.grace_period,
            "overage_allowed": self.overage_allowed,
            "overage_price_per_unit": self.overage_price_per_unit,
            "features": self.features,
            "excluded_features": self.excluded_features,
            "priority": self.priority,
            "is_active": self.is_active,
            "description": self.description,
            "effective_from": isoformat(self.effective_from),
            "effective_until": isoformat(self.effective_until),
        }
