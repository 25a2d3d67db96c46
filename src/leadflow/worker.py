"""Job queue worker.

Claims due jobs from the ``jobs`` table and runs them with bounded
concurrency. A claim commits immediately, so a job is never picked up by two
workers; the outcome is recorded in a separate transaction once it finishes.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from .actions.scrape_company import scrape_and_update_lead
from .config import config
from .errors import NotFoundError
from .logging_utils import get_logger, log_context
from .models import JobType, get_db_session
from .services import jobs

logger = get_logger(__name__)


@dataclass
class ClaimedJob:
    """Snapshot of a claimed job, detached from its session."""

    id: str
    job_type: JobType
    lead_id: Optional[str]
    attempts: int
    max_attempts: int

    @property
    def is_last_attempt(self) -> bool:
        return self.attempts >= self.max_attempts


@dataclass
class JobOutcome:
    """Result a handler reports back to the worker."""

    success: bool
    error: Optional[str] = None
    permanent: bool = False


JobHandler = Callable[[ClaimedJob], Awaitable[JobOutcome]]


async def run_scrape_lead(job: ClaimedJob) -> JobOutcome:
    if not job.lead_id:
        return JobOutcome(success=False, error="scrape_lead job has no lead_id", permanent=True)

    try:
        result = await scrape_and_update_lead(
            job.lead_id, will_retry=not job.is_last_attempt
        )
    except NotFoundError as e:
        return JobOutcome(success=False, error=str(e), permanent=True)

    if result.get("success"):
        return JobOutcome(success=True)
    return JobOutcome(
        success=False,
        error=result.get("error"),
        permanent=result.get("permanent", False),
    )


class JobWorker:
    """Polls the job queue and runs jobs concurrently.

    Attributes:
        concurrency: Jobs claimed and run per pass.
        poll_interval: Seconds to sleep when the queue is empty.
    """

    def __init__(
        self,
        concurrency: Optional[int] = None,
        poll_interval: Optional[float] = None,
        handlers: Optional[dict[JobType, JobHandler]] = None,
    ):
        self.concurrency = concurrency or config.JOB_CONCURRENCY
        self.poll_interval = (
            poll_interval if poll_interval is not None else config.JOB_POLL_INTERVAL_SECONDS
        )
        self.handlers: dict[JobType, JobHandler] = (
            handlers if handlers is not None else {JobType.SCRAPE_LEAD: run_scrape_lead}
        )
        self._semaphore = asyncio.Semaphore(self.concurrency)
        self._stopping = asyncio.Event()

    async def _claim(self) -> Optional[ClaimedJob]:
        async with get_db_session() as session:
            job = await jobs.claim_next(session)
            if job is None:
                return None
            return ClaimedJob(
                id=job.id,
                job_type=job.job_type,
                lead_id=job.lead_id,
                attempts=job.attempts,
                max_attempts=job.max_attempts,
            )

    async def _execute(self, job: ClaimedJob) -> JobOutcome:
        handler = self.handlers.get(job.job_type)
        if handler is None:
            return JobOutcome(
                success=False,
                error=f"Unknown job type: {job.job_type}",
                permanent=True,
            )

        async with self._semaphore:
            try:
                return await handler(job)
            except Exception as e:
                logger.error("Job %s raised: %s", job.id, e, exc_info=True)
                return JobOutcome(success=False, error=str(e) or type(e).__name__)

    async def _process(self, job: ClaimedJob) -> bool:
        with log_context(job_id=job.id, lead_id=job.lead_id):
            logger.info(
                "Running %s job (attempt %d/%d)",
                job.job_type.value, job.attempts, job.max_attempts,
            )
            outcome = await self._execute(job)

        async with get_db_session() as session:
            if outcome.success:
                await jobs.complete(session, job.id)
            else:
                await jobs.fail(
                    session,
                    job.id,
                    outcome.error or "Job failed",
                    permanent=outcome.permanent,
                )
        return outcome.success

    async def run_once(self) -> int:
        """Claim up to ``concurrency`` due jobs and run them.

        Returns:
            Number of jobs processed in this pass.
        """
        claimed: list[ClaimedJob] = []
        for _ in range(self.concurrency):
            job = await self._claim()
            if job is None:
                break
            claimed.append(job)

        if not claimed:
            return 0

        results = await asyncio.gather(
            *(self._process(job) for job in claimed),
            return_exceptions=True,
        )
        for job, result in zip(claimed, results):
            if isinstance(result, Exception):
                logger.error("Failed to record outcome of job %s: %s", job.id, result)

        return len(claimed)

    async def run_forever(self) -> None:
        """Poll until ``stop()`` is called."""
        logger.info(
            "Job worker started (concurrency=%d, poll_interval=%.1fs)",
            self.concurrency,
            self.poll_interval,
        )
        while not self._stopping.is_set():
            try:
                processed = await self.run_once()
            except Exception as e:
                logger.error("Job worker pass failed: %s", e, exc_info=True)
                processed = 0

            if processed == 0:
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
        logger.info("Job worker stopped")

    def stop(self) -> None:
        self._stopping.set()
