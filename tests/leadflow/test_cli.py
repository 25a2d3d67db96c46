"""Unit tests for the command line entry point."""

from unittest.mock import AsyncMock, patch

import pytest

from leadflow.main import create_parser, run_usage_sync


class TestSyncUsageCommand:
    """The sync-usage command runs the scheduled sync."""

    def test_cleanup_on_by_default(self):
        """Test that sync-usage cleans up unless told to skip it."""
        args = create_parser().parse_args(["sync-usage", "--batch-size", "5"])
        assert args.batch_size == 5
        assert args.skip_cleanup is False

    @pytest.mark.asyncio
    async def test_runs_scheduled_sync(self):
        """Test that the command delegates to schedule_usage_sync."""
        args = create_parser().parse_args(["sync-usage", "--batch-size", "5", "--skip-cleanup"])

        with patch("leadflow.actions.usage_sync.PolarUsageSync") as sync_cls, \
             patch("leadflow.models.close_database", new=AsyncMock()) as close:
            sync_cls.return_value.schedule_usage_sync = AsyncMock(
                return_value={"synced": 2, "failed": 0}
            )
            code = await run_usage_sync(args)

        assert code == 0
        sync_cls.return_value.schedule_usage_sync.assert_awaited_once_with(batch_size=5, cleanup=False)
        close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failures_set_exit_code(self):
        """Test that failed events give a non-zero exit code."""
        args = create_parser().parse_args(["sync-usage"])

        with patch("leadflow.actions.usage_sync.PolarUsageSync") as sync_cls, \
             patch("leadflow.models.close_database", new=AsyncMock()):
            sync_cls.return_value.schedule_usage_sync = AsyncMock(
                return_value={"synced": 1, "failed": 1, "cleanup": 0}
            )
            assert await run_usage_sync(args) == 1
