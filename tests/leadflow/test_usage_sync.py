"""Tests for syncing usage events to Polar and mirroring Polar meters.

The Polar client is a MagicMock; events live in a SQLite file database.
"""

from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
import pytest_asyncio
from sqlalchemy import select

from leadflow.actions.usage_sync import PolarUsageSync, build_polar_event
from leadflow.config import config
from leadflow.integrations.polar import PolarError
from leadflow.models import UsageEvent, UsageMeter, User, get_db_session, utcnow
from leadflow.services import usage


async def add_event(user_id, **overrides) -> str:
    values = {
        "user_id": user_id,
        "event_type": "api_call",
        "metric_type": "api_calls",
        "amount": 1,
        "allowed": True,
        "billable": True,
        "synced_to_polar": False,
        "timestamp": utcnow(),
    }
    values.update(overrides)
    async with get_db_session() as session:
        event = UsageEvent(**values)
        session.add(event)
        await session.flush()
        event_id = event.id
    return event_id


async def load_event(event_id: str) -> UsageEvent:
    async with get_db_session() as session:
        return await session.get(UsageEvent, event_id)


@pytest_asyncio.fixture
async def billed_user(db_engine) -> str:
    async with get_db_session() as session:
        session.add(User(
            id="user_billed",
            name="Bea Billed",
            email="bea@example.com",
            polar_customer_id="cus_123",
        ))
    return "user_billed"


@pytest_asyncio.fixture
async def unlinked_user(db_engine) -> str:
    async with get_db_session() as session:
        session.add(User(id="user_unlinked", name="Uma", email="uma@example.com"))
    return "user_unlinked"


@pytest.fixture
def polar():
    client = MagicMock()
    client.ingest_events.return_value = {"inserted": 1}
    client.list_customer_meters.return_value = []
    return client


class TestBuildPolarEvent:
    """Shape of the ingestion payload."""

    def test_payload(self):
        """Test name, customer, external id, timestamp and metadata."""
        event = UsageEvent(
            event_id="evt_1",
            event_type="chat_message",
            metric_type="tokens",
            amount=120,
            feature="voice",
            cost=0.02,
            currency="usd",
            timestamp=datetime(2024, 5, 1, 12, 0, 0),
            event_metadata={"model": "gpt", "nested": {"skip": True}, "amount": 999},
        )

        payload = build_polar_event(event, "cus_1")

        assert payload["name"] == "chat_message"
        assert payload["customer_id"] == "cus_1"
        assert payload["external_id"] == "evt_1"
        assert payload["timestamp"] == "2024-05-01T12:00:00Z"
        assert payload["metadata"] == {
            "metric_type": "tokens",
            "amount": 120,
            "feature": "voice",
            "cost": 0.02,
            "currency": "usd",
            "model": "gpt",
        }


class TestSyncUsageToPolar:
    """sync_usage_to_polar bookkeeping."""

    @pytest.mark.asyncio
    async def test_skipped_without_token(self, db_engine):
        """Test that sync is skipped when Polar is not configured."""
        with patch.object(config, "POLAR_ACCESS_TOKEN", None):
            result = await PolarUsageSync().sync_usage_to_polar()
        assert result == {"synced": 0, "failed": 0, "skipped": True}

    @pytest.mark.asyncio
    async def test_nothing_pending(self, billed_user, polar):
        """Test an empty run."""
        result = await PolarUsageSync(polar).sync_usage_to_polar()
        assert result == {"synced": 0, "failed": 0}
        polar.ingest_events.assert_not_called()

    @pytest.mark.asyncio
    async def test_syncs_billable_events(self, billed_user, polar):
        """Test that billable events are ingested and marked synced."""
        event_id = await add_event(billed_user)
        unbillable_id = await add_event(billed_user, billable=False, allowed=False)

        result = await PolarUsageSync(polar).sync_usage_to_polar()

        assert result == {"synced": 1, "failed": 0}
        sent = polar.ingest_events.call_args.args[0]
        assert sent[0]["customer_id"] == "cus_123"

        event = await load_event(event_id)
        assert event.synced_to_polar is True
        assert event.polar_event_id == event.event_id
        assert event.polar_synced_at is not None
        assert (await load_event(unbillable_id)).synced_to_polar is False
        polar.list_customer_meters.assert_called_once_with("cus_123")

    @pytest.mark.asyncio
    async def test_unlinked_users_left_for_later(self, unlinked_user, polar):
        """Test that events of users without a Polar customer are not picked up."""
        event_id = await add_event(unlinked_user)

        result = await PolarUsageSync(polar).sync_usage_to_polar()

        assert result == {"synced": 0, "failed": 0}
        polar.ingest_events.assert_not_called()
        event = await load_event(event_id)
        assert event.synced_to_polar is False
        assert event.polar_sync_error is None

    @pytest.mark.asyncio
    async def test_ingest_error_recorded(self, billed_user, polar):
        """Test that an ingestion error is stored on the event."""
        polar.ingest_events.side_effect = PolarError("Polar API error: 500", status_code=500)
        event_id = await add_event(billed_user)

        result = await PolarUsageSync(polar).sync_usage_to_polar()

        assert result == {"synced": 0, "failed": 1}
        event = await load_event(event_id)
        assert event.synced_to_polar is False
        assert "500" in event.polar_sync_error
        polar.list_customer_meters.assert_not_called()

    @pytest.mark.asyncio
    async def test_batch_size_limits_run(self, billed_user, polar):
        """Test that only batch_size events are sent per run."""
        for _ in range(3):
            await add_event(billed_user)

        result = await PolarUsageSync(polar).sync_usage_to_polar(batch_size=2)

        assert result["synced"] == 2
        assert polar.ingest_events.call_count == 2

    @pytest.mark.asyncio
    async def test_unlinked_backlog_does_not_block_others(self, billed_user, unlinked_user, polar):
        """Test that a backlog from an unlinked user never fills the batch."""
        old = utcnow() - timedelta(hours=1)
        for _ in range(3):
            await add_event(unlinked_user, timestamp=old)
        linked_id = await add_event(billed_user)

        result = await PolarUsageSync(polar).sync_usage_to_polar(batch_size=3)

        assert result == {"synced": 1, "failed": 0}
        assert (await load_event(linked_id)).synced_to_polar is True

    @pytest.mark.asyncio
    async def test_failed_events_retried_after_fresh_ones(self, billed_user, polar):
        """Test that earlier failures queue behind events never attempted."""
        old = utcnow() - timedelta(hours=1)
        failed_ids = [
            await add_event(
                billed_user,
                timestamp=old,
                polar_synced_at=old,
                polar_sync_error="Polar API error: 500",
            )
            for _ in range(2)
        ]
        fresh_id = await add_event(billed_user)

        result = await PolarUsageSync(polar).sync_usage_to_polar(batch_size=1)

        assert result == {"synced": 1, "failed": 0}
        assert (await load_event(fresh_id)).synced_to_polar is True
        assert all(
            [(await load_event(event_id)).synced_to_polar is False for event_id in failed_ids]
        )


class TestMeters:
    """Mirroring Polar customer meters."""

    @pytest.mark.asyncio
    async def test_update_meters_from_polar(self, billed_user, polar):
        """Test that Polar meters are upserted locally."""
        polar.list_customer_meters.return_value = [
            {
                "meter_id": "m_1",
                "meter": {"id": "m_1", "name": "api_calls"},
                "consumed_units": 40,
                "credited_units": 100,
                "balance": 60,
            }
        ]
        sync = PolarUsageSync(polar)

        first = await sync.update_meters_from_polar()
        polar.list_customer_meters.return_value[0]["consumed_units"] = 55
        await sync.update_meters_from_polar()

        async with get_db_session() as session:
            meters = (await session.execute(select(UsageMeter))).scalars().all()

        assert first == {"updated": 1}
        assert len(meters) == 1
        assert meters[0].polar_meter_id == "m_1"
        assert meters[0].meter_type == "api_calls"
        assert meters[0].consumed == 55
        assert meters[0].limit == 100
        assert meters[0].period_start <= utcnow() < meters[0].period_end

    @pytest.mark.asyncio
    async def test_polar_meter_adopts_local_meter(self, billed_user, polar):
        """Test that credited limits land on the meter local events count against."""
        async with get_db_session() as session:
            await usage.track_usage_event(session, billed_user, "api_call", "api_calls")

        await PolarUsageSync(polar).update_local_meter(
            user_id=billed_user,
            polar_customer_id="cus_123",
            polar_meter_id="met_1",
            meter_name="api_calls",
            meter_type="api_calls",
            consumed=5,
            balance=0,
            limit=5,
        )

        async with get_db_session() as session:
            meters = (await session.execute(select(UsageMeter))).scalars().all()
            check = await usage.check_usage_available(session, billed_user, "api_calls", 1)

        assert [(m.polar_meter_id, m.consumed, m.limit) for m in meters] == [("met_1", 5, 5)]
        assert check["allowed"] is False
        assert check["remaining"] == 0

    @pytest.mark.asyncio
    async def test_meter_without_credits_is_unlimited(self, billed_user, polar):
        """Test that zero credited units leaves the meter without a limit."""
        polar.list_customer_meters.return_value = [
            {"meter": {"id": "m_2", "name": "tokens"}, "consumed_units": 5, "credited_units": 0}
        ]

        await PolarUsageSync(polar).update_meters_from_polar()

        async with get_db_session() as session:
            meter = (await session.execute(select(UsageMeter))).scalars().one()
        assert meter.limit is None

    @pytest.mark.asyncio
    async def test_polar_errors_skip_user(self, billed_user, polar):
        """Test that a failing customer lookup is logged and skipped."""
        polar.list_customer_meters.side_effect = PolarError("boom")

        assert await PolarUsageSync(polar).update_meters_from_polar() == {"updated": 0}


class TestCleanup:
    """cleanup_old_events and the scheduled run."""

    @pytest.mark.asyncio
    async def test_deletes_only_old_synced_events(self, billed_user):
        """Test that recent and unsynced events survive cleanup."""
        old_synced = await add_event(
            billed_user, synced_to_polar=True, timestamp=utcnow() - timedelta(days=40)
        )
        old_unsynced = await add_event(billed_user, timestamp=utcnow() - timedelta(days=40))
        recent_synced = await add_event(billed_user, synced_to_polar=True)

        result = await PolarUsageSync(MagicMock()).cleanup_old_events(days_to_keep=30)

        assert result == {"deleted": 1}
        assert await load_event(old_synced) is None
        assert await load_event(old_unsynced) is not None
        assert await load_event(recent_synced) is not None

    @pytest.mark.asyncio
    async def test_schedule_runs_sync_then_cleanup(self, billed_user, polar):
        """Test the scheduled entry point."""
        await add_event(billed_user)
        sync = PolarUsageSync(polar)

        with patch.object(sync, "cleanup_old_events", wraps=sync.cleanup_old_events) as cleanup:
            result = await sync.schedule_usage_sync()

        assert result["synced"] == 1
        cleanup.assert_awaited_once_with(config.USAGE_RETENTION_DAYS)
