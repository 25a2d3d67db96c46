"""Tests for the job queue service and the JobWorker."""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from leadflow.errors import NotFoundError
from leadflow.models import Job, JobStatus, JobType, LeadStatus, get_db_session, utcnow
from leadflow.services import jobs
from leadflow.worker import ClaimedJob, JobOutcome, JobWorker, run_scrape_lead


async def load_job(job_id: str) -> Job:
    async with get_db_session() as session:
        return await session.get(Job, job_id)


async def enqueue_committed(lead_id=None, max_attempts=3) -> str:
    async with get_db_session() as session:
        job = await jobs.enqueue(session, JobType.SCRAPE_LEAD, lead_id=lead_id, max_attempts=max_attempts)
        job_id = job.id
    return job_id


class TestJobQueue:
    """Claiming, completing and failing jobs."""

    @pytest.mark.asyncio
    async def test_claim_oldest_due_job(self, session):
        """Test that claiming picks the oldest due job and counts the attempt."""
        first = await jobs.enqueue(session, JobType.SCRAPE_LEAD)
        second = await jobs.enqueue(session, JobType.SCRAPE_LEAD)
        second.run_after = first.run_after + timedelta(microseconds=1)
        await session.flush()

        claimed = await jobs.claim_next(session)

        assert claimed.id == first.id
        assert claimed.status == JobStatus.PROCESSING
        assert claimed.attempts == 1
        assert claimed.started_at is not None

    @pytest.mark.asyncio
    async def test_future_jobs_not_claimed(self, session):
        """Test that run_after in the future hides a job."""
        job = await jobs.enqueue(session, JobType.SCRAPE_LEAD)
        job.run_after = utcnow() + timedelta(hours=1)
        await session.flush()

        assert await jobs.claim_next(session) is None

    @pytest.mark.asyncio
    async def test_empty_queue(self, session):
        """Test that an empty queue yields None."""
        assert await jobs.claim_next(session) is None

    @pytest.mark.asyncio
    async def test_stale_processing_job_reclaimed(self, session):
        """Test that a job whose worker died is claimed again after the timeout."""
        job = await jobs.enqueue(session, JobType.SCRAPE_LEAD, max_attempts=3)
        await jobs.claim_next(session)
        job.started_at = utcnow() - timedelta(hours=1)
        await session.flush()

        assert await jobs.claim_next(session, visibility_timeout=3600 * 2) is None
        reclaimed = await jobs.claim_next(session, visibility_timeout=60)

        assert reclaimed.id == job.id
        assert reclaimed.status == JobStatus.PROCESSING
        assert reclaimed.attempts == 2
        assert reclaimed.started_at > utcnow() - timedelta(minutes=1)

    @pytest.mark.asyncio
    async def test_stale_job_without_attempts_fails_with_lead(self, session, lead):
        """Test that an abandoned last attempt fails the job and its lead."""
        job = await jobs.enqueue(session, JobType.SCRAPE_LEAD, lead_id=lead.id, max_attempts=1)
        await jobs.claim_next(session)
        lead.status = LeadStatus.PROCESSING
        job.started_at = utcnow() - timedelta(hours=1)
        await session.flush()

        assert await jobs.claim_next(session, visibility_timeout=60) is None
        assert job.status == JobStatus.FAILED
        assert job.error == jobs.ABANDONED_ERROR
        assert lead.status == LeadStatus.FAILED
        assert lead.processed_at is not None

    @pytest.mark.asyncio
    async def test_fail_schedules_retry_with_backoff(self, session):
        """Test that a failed attempt goes back to pending later."""
        await jobs.enqueue(session, JobType.SCRAPE_LEAD, max_attempts=3)
        job = await jobs.claim_next(session)
        before = utcnow()

        await jobs.fail(session, job.id, "Timeout", retry_delay_seconds=10)

        assert job.status == JobStatus.PENDING
        assert job.error == "Timeout"
        assert job.run_after >= before + timedelta(seconds=10)

        # Second attempt doubles the delay
        job.run_after = utcnow()
        await session.flush()
        await jobs.claim_next(session)
        before = utcnow()
        await jobs.fail(session, job.id, "Timeout", retry_delay_seconds=10)
        assert job.run_after >= before + timedelta(seconds=20)

    @pytest.mark.asyncio
    async def test_fail_after_last_attempt(self, session):
        """Test that the job is failed once attempts run out."""
        await jobs.enqueue(session, JobType.SCRAPE_LEAD, max_attempts=1)
        job = await jobs.claim_next(session)

        await jobs.fail(session, job.id, "Gone for good")

        assert job.status == JobStatus.FAILED
        assert job.completed_at is not None

    @pytest.mark.asyncio
    async def test_permanent_failure_skips_retries(self, session):
        """Test that permanent failures do not retry."""
        await jobs.enqueue(session, JobType.SCRAPE_LEAD, max_attempts=5)
        job = await jobs.claim_next(session)

        await jobs.fail(session, job.id, "Lead not found", permanent=True)

        assert job.status == JobStatus.FAILED
        assert job.attempts == 1

    @pytest.mark.asyncio
    async def test_complete_clears_error(self, session):
        """Test that completing a job clears an earlier error."""
        await jobs.enqueue(session, JobType.SCRAPE_LEAD)
        job = await jobs.claim_next(session)
        job.error = "earlier failure"

        await jobs.complete(session, job.id)

        assert job.status == JobStatus.COMPLETED
        assert job.error is None

    @pytest.mark.asyncio
    async def test_unknown_job(self, session):
        """Test NotFoundError for unknown job ids."""
        with pytest.raises(NotFoundError):
            await jobs.complete(session, "missing")
        with pytest.raises(NotFoundError):
            await jobs.fail(session, "missing", "x")


class TestJobWorker:
    """Worker passes with stubbed handlers."""

    @pytest.mark.asyncio
    async def test_run_once_completes_jobs(self, db_engine):
        """Test that successful handlers complete their jobs."""
        job_ids = [await enqueue_committed() for _ in range(2)]
        handler = AsyncMock(return_value=JobOutcome(success=True))
        worker = JobWorker(concurrency=5, handlers={JobType.SCRAPE_LEAD: handler})

        processed = await worker.run_once()

        assert processed == 2
        assert handler.await_count == 2
        for job_id in job_ids:
            assert (await load_job(job_id)).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_run_once_respects_concurrency(self, db_engine):
        """Test that one pass claims at most ``concurrency`` jobs."""
        for _ in range(3):
            await enqueue_committed()
        handler = AsyncMock(return_value=JobOutcome(success=True))
        worker = JobWorker(concurrency=2, handlers={JobType.SCRAPE_LEAD: handler})

        assert await worker.run_once() == 2
        assert await worker.run_once() == 1
        assert await worker.run_once() == 0

    @pytest.mark.asyncio
    async def test_handler_exception_is_retried(self, db_engine):
        """Test that a raising handler records the error and reschedules."""
        job_id = await enqueue_committed(max_attempts=3)
        handler = AsyncMock(side_effect=RuntimeError("boom"))
        worker = JobWorker(handlers={JobType.SCRAPE_LEAD: handler})

        await worker.run_once()

        job = await load_job(job_id)
        assert job.status == JobStatus.PENDING
        assert job.error == "boom"
        assert job.attempts == 1

    @pytest.mark.asyncio
    async def test_unknown_job_type_fails_permanently(self, db_engine):
        """Test that a job with no handler is failed without retries."""
        job_id = await enqueue_committed(max_attempts=3)
        worker = JobWorker(handlers={})

        await worker.run_once()

        job = await load_job(job_id)
        assert job.status == JobStatus.FAILED
        assert "Unknown job type" in job.error

    @pytest.mark.asyncio
    async def test_run_forever_stops(self, db_engine):
        """Test that stop() ends the polling loop."""
        worker = JobWorker(poll_interval=0.01, handlers={})

        run_once = AsyncMock(side_effect=lambda: worker.stop() or 0)

        with patch.object(worker, "run_once", run_once):
            await worker.run_forever()

        run_once.assert_awaited_once()


class TestScrapeLeadHandler:
    """run_scrape_lead maps action results to job outcomes."""

    @pytest.mark.asyncio
    async def test_missing_lead_id(self):
        """Test that a scrape job without a lead fails permanently."""
        job = ClaimedJob(id="j1", job_type=JobType.SCRAPE_LEAD, lead_id=None, attempts=1, max_attempts=3)
        outcome = await run_scrape_lead(job)
        assert outcome.success is False
        assert outcome.permanent is True

    @pytest.mark.asyncio
    async def test_passes_retry_flag(self):
        """Test that only the last attempt lets the action fail the lead."""
        action = AsyncMock(return_value={"success": False, "error": "Timeout"})
        early = ClaimedJob(id="j1", job_type=JobType.SCRAPE_LEAD, lead_id="l1", attempts=1, max_attempts=3)
        last = ClaimedJob(id="j1", job_type=JobType.SCRAPE_LEAD, lead_id="l1", attempts=3, max_attempts=3)

        with patch("leadflow.worker.scrape_and_update_lead", action):
            outcome = await run_scrape_lead(early)
            await run_scrape_lead(last)

        assert outcome == JobOutcome(success=False, error="Timeout")
        assert action.await_args_list[0].kwargs["will_retry"] is True
        assert action.await_args_list[1].kwargs["will_retry"] is False

    @pytest.mark.asyncio
    async def test_lead_not_found_is_permanent(self):
        """Test that a deleted lead fails the job permanently."""
        action = AsyncMock(side_effect=NotFoundError("Lead not found"))
        job = ClaimedJob(id="j1", job_type=JobType.SCRAPE_LEAD, lead_id="l1", attempts=1, max_attempts=3)

        with patch("leadflow.worker.scrape_and_update_lead", action):
            outcome = await run_scrape_lead(job)

        assert outcome.permanent is True
        assert outcome.error == "Lead not found"

    @pytest.mark.asyncio
    async def test_finished_lead_is_permanent(self):
        """Test that a lead already completed elsewhere is not retried."""
        action = AsyncMock(return_value={
            "success": False,
            "error": "Lead is already completed",
            "permanent": True,
        })
        job = ClaimedJob(id="j1", job_type=JobType.SCRAPE_LEAD, lead_id="l1", attempts=1, max_attempts=3)

        with patch("leadflow.worker.scrape_and_update_lead", action):
            outcome = await run_scrape_lead(job)

        assert outcome == JobOutcome(
            success=False, error="Lead is already completed", permanent=True
        )
