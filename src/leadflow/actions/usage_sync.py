"""Usage sync from local events to Polar usage-based billing.

``schedule_usage_sync`` is the cron entry point: it pushes unsynced billable
events to Polar's event ingestion, refreshes local meters from Polar's
customer meters, then deletes old synced events.
"""

import asyncio
import functools
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import delete, select

from ..config import config
from ..integrations.polar import PolarClient, PolarError
from ..logging_utils import get_logger
from ..models import UsageEvent, UsageMeter, User, get_db_session, utcnow
from ..services.usage import ensure_month_meter, get_current_meter

logger = get_logger(__name__)

CLEANUP_BATCH_SIZE = 100


def build_polar_event(event: UsageEvent, customer_id: str) -> dict[str, Any]:
    """Shape a local usage event for Polar's ingestion API.

    ``external_id`` is the local ``event_id`` so Polar drops re-sent events.
    Polar metadata only accepts scalar values; anything else is skipped.
    """
    metadata: dict[str, Any] = {
        "metric_type": event.metric_type,
        "amount": event.amount,
    }
    for key in ("feature", "endpoint", "method"):
        value = getattr(event, key)
        if value:
            metadata[key] = value
    if event.cost is not None:
        metadata["cost"] = event.cost
    if event.currency:
        metadata["currency"] = event.currency

    for key, value in (event.event_metadata or {}).items():
        if isinstance(value, (str, int, float, bool)) and key not in metadata:
            metadata[key] = value

    return {
        "name": event.event_type,
        "customer_id": customer_id,
        "external_id": event.event_id,
        "timestamp": event.timestamp.isoformat() + "Z",
        "metadata": metadata,
    }


class PolarUsageSync:
    """Pushes usage to Polar and mirrors Polar meters locally.

    Each database step runs in its own transaction so one bad event does not
    undo the bookkeeping of the others.

    Example:
        >>> sync = PolarUsageSync()
        >>> await sync.schedule_usage_sync()
        {'synced': 12, 'failed': 0}
    """

    def __init__(self, polar_client: Optional[PolarClient] = None):
        self._client = polar_client

    def _get_client(self) -> Optional[PolarClient]:
        if self._client is None and config.POLAR_ACCESS_TOKEN:
            self._client = PolarClient()
        return self._client

    async def _call_polar(self, func, *args, **kwargs) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))

    async def sync_usage_to_polar(self, batch_size: Optional[int] = None) -> dict[str, Any]:
        """Ingest up to ``batch_size`` unsynced billable events into Polar.

        Only events of users linked to a Polar customer are picked up. Events
        never attempted come first, then earlier failures, oldest attempt first,
        so a run of failing events cannot starve the rest.

        Returns:
            ``{"synced": n, "failed": n}``, plus ``"skipped": True`` when Polar
            is not configured.
        """
        client = self._get_client()
        if client is None:
            logger.info("Polar client not configured, skipping usage sync")
            return {"synced": 0, "failed": 0, "skipped": True}

        batch_size = batch_size or config.USAGE_SYNC_BATCH_SIZE

        async with get_db_session() as session:
            result = await session.execute(
                select(UsageEvent, User.polar_customer_id)
                .join(User, User.id == UsageEvent.user_id)
                .where(
                    UsageEvent.synced_to_polar.is_(False),
                    UsageEvent.billable.is_(True),
                    User.polar_customer_id.is_not(None),
                )
                .order_by(
                    UsageEvent.polar_synced_at.asc().nulls_first(),
                    UsageEvent.timestamp.asc(),
                )
                .limit(batch_size)
            )
            pending = [(event, customer_id) for event, customer_id in result.all()]

        if not pending:
            return {"synced": 0, "failed": 0}

        synced = 0
        failed = 0

        for event, customer_id in pending:
            try:
                await self._call_polar(
                    client.ingest_events, [build_polar_event(event, customer_id)]
                )
            except PolarError as e:
                logger.error("Polar ingestion failed for event %s: %s", event.event_id, e)
                await self.mark_event_synced(event.id, success=False, error=str(e))
                failed += 1
                continue

            await self.mark_event_synced(event.id, success=True, polar_event_id=event.event_id)
            synced += 1

        if synced > 0:
            await self.update_meters_from_polar()

        logger.info("Usage sync: %d synced, %d failed", synced, failed)
        return {"synced": synced, "failed": failed}

    async def mark_event_synced(
        self,
        event_id: str,
        success: bool,
        polar_event_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """Record the outcome of one ingestion attempt on the event row."""
        async with get_db_session() as session:
            event = await session.get(UsageEvent, event_id)
            if event is None:
                logger.warning("Usage event %s disappeared before it was marked", event_id)
                return

            event.polar_synced_at = utcnow()
            if success:
                event.synced_to_polar = True
                event.polar_event_id = polar_event_id
                event.polar_sync_error = None
            else:
                event.synced_to_polar = False
                event.polar_sync_error = error or "Polar sync failed"

    async def update_meters_from_polar(self) -> dict[str, Any]:
        """Refresh local meters from every linked customer's Polar meters."""
        client = self._get_client()
        if client is None:
            return {"updated": 0, "skipped": True}

        async with get_db_session() as session:
            result = await session.execute(
                select(User.id, User.polar_customer_id).where(
                    User.polar_customer_id.is_not(None)
                )
            )
            users = list(result.all())

        updated = 0
        for user_id, customer_id in users:
            try:
                meters = await self._call_polar(client.list_customer_meters, customer_id)
            except PolarError as e:
                logger.error("Error fetching Polar meters for user %s: %s", user_id, e)
                continue

            for polar_meter in meters:
                meter_info = polar_meter.get("meter") or {}
                meter_id = meter_info.get("id") or polar_meter.get("meter_id")
                if not meter_id:
                    continue
                name = meter_info.get("name") or meter_id
                credited = polar_meter.get("credited_units") or 0

                await self.update_local_meter(
                    user_id=user_id,
                    polar_customer_id=customer_id,
                    polar_meter_id=meter_id,
                    meter_name=name,
                    meter_type=name,
                    consumed=float(polar_meter.get("consumed_units") or 0),
                    balance=float(polar_meter.get("balance") or 0),
                    limit=float(credited) if credited else None,
                )
                updated += 1

        return {"updated": updated}

    async def update_local_meter(
        self,
        user_id: str,
        polar_customer_id: str,
        polar_meter_id: str,
        meter_name: str,
        meter_type: str,
        consumed: float,
        balance: float,
        limit: Optional[float] = None,
    ) -> UsageMeter:
        """Write a Polar meter's figures onto this month's meter for the metric.

        The row locally tracked events count against is adopted rather than
        duplicated, so limits credited in Polar apply to new events.
        """
        now = utcnow()
        async with get_db_session() as session:
            await ensure_month_meter(
                session,
                user_id,
                meter_type,
                now,
                polar_customer_id=polar_customer_id,
                polar_meter_id=polar_meter_id,
            )
            meter = await get_current_meter(session, user_id, meter_type, now, lock=True)
            meter.polar_customer_id = polar_customer_id
            meter.polar_meter_id = polar_meter_id
            meter.meter_name = meter_name
            meter.consumed = consumed
            meter.balance = balance
            meter.limit = limit
            meter.last_used_at = now
            meter.updated_at = now
            await session.flush()
            return meter

    async def cleanup_old_events(self, days_to_keep: Optional[int] = None) -> dict[str, int]:
        """Delete up to 100 synced events older than ``days_to_keep`` days."""
        days_to_keep = days_to_keep if days_to_keep is not None else config.USAGE_RETENTION_DAYS
        cutoff = utcnow() - timedelta(days=days_to_keep)

        async with get_db_session() as session:
            result = await session.execute(
                select(UsageEvent.id)
                .where(
                    UsageEvent.synced_to_polar.is_(True),
                    UsageEvent.timestamp < cutoff,
                )
                .limit(CLEANUP_BATCH_SIZE)
            )
            ids = list(result.scalars().all())
            if ids:
                await session.execute(delete(UsageEvent).where(UsageEvent.id.in_(ids)))

        logger.info("Cleaned up %d old usage events", len(ids))
        return {"deleted": len(ids)}

    async def schedule_usage_sync(
        self,
        batch_size: Optional[int] = None,
        cleanup: bool = True,
    ) -> dict[str, Any]:
        """Sync a batch to Polar, then clean up old synced events.

        This is what the ``sync-usage`` command runs from cron.
        """
        result = await self.sync_usage_to_polar(batch_size or config.USAGE_SYNC_BATCH_SIZE)
        logger.info(
            "Usage sync completed: %d synced, %d failed",
            result["synced"],
            result["failed"],
        )
        if cleanup:
            result["cleanup"] = await self.cleanup_old_events(config.USAGE_RETENTION_DAYS)
        return result
