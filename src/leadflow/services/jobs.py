"""Job queue operations used by lead creation and ``JobWorker``.

Retries are rows going back to ``pending`` with a later ``run_after``;
``attempts`` only ever grows.
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import config
from ..errors import NotFoundError
from ..logging_utils import get_logger
from ..models import Job, JobStatus, JobType, Lead, LeadStatus, utcnow

logger = get_logger(__name__)

ABANDONED_ERROR = "Worker stopped before finishing the job"


async def enqueue(
    session: AsyncSession,
    job_type: JobType,
    lead_id: Optional[str] = None,
    max_attempts: Optional[int] = None,
) -> Job:
    """Queue a job in the caller's transaction."""
    job = Job(
        job_type=job_type,
        lead_id=lead_id,
        status=JobStatus.PENDING,
        attempts=0,
        max_attempts=max_attempts or config.JOB_MAX_ATTEMPTS,
        run_after=utcnow(),
    )
    session.add(job)
    await session.flush()
    logger.info("Enqueued %s job %s (lead=%s)", job_type.value, job.id, lead_id)
    return job


async def _fail_abandoned(session: AsyncSession, job: Job, now: datetime) -> None:
    job.status = JobStatus.FAILED
    job.error = ABANDONED_ERROR
    job.completed_at = now
    logger.error("Job %s abandoned after %d attempts", job.id, job.attempts)

    if job.lead_id is None:
        return
    lead = await session.get(Lead, job.lead_id)
    if lead is not None and not lead.status.is_terminal:
        lead.status = LeadStatus.FAILED
        lead.error_message = ABANDONED_ERROR
        lead.processed_at = now
        lead.updated_at = now


async def claim_next(
    session: AsyncSession,
    visibility_timeout: Optional[float] = None,
) -> Optional[Job]:
    """Claim the oldest due job.

    Due jobs are pending ones past ``run_after`` and processing ones claimed
    more than ``visibility_timeout`` seconds ago, whose worker is presumed
    dead. An abandoned job with no attempts left is failed, along with its
    lead, and the search goes on.

    The row is locked with ``SKIP LOCKED`` where the database supports it, so
    concurrent workers never claim the same job.
    """
    now = utcnow()
    timeout = (
        visibility_timeout
        if visibility_timeout is not None
        else config.JOB_VISIBILITY_TIMEOUT_SECONDS
    )
    stale_before = now - timedelta(seconds=timeout)

    while True:
        result = await session.execute(
            select(Job)
            .where(
                or_(
                    and_(Job.status == JobStatus.PENDING, Job.run_after <= now),
                    and_(
                        Job.status == JobStatus.PROCESSING,
                        Job.started_at < stale_before,
                    ),
                )
            )
            .order_by(Job.run_after.asc(), Job.created_at.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        job = result.scalar_one_or_none()
        if job is None:
            return None
        if job.status == JobStatus.PENDING:
            break

        if job.has_attempts_left:
            logger.warning("Reclaiming job %s, claimed at %s", job.id, job.started_at)
            break
        await _fail_abandoned(session, job, now)
        await session.flush()

    job.status = JobStatus.PROCESSING
    job.attempts += 1
    job.started_at = now
    await session.flush()
    logger.debug("Claimed job %s (attempt %d/%d)", job.id, job.attempts, job.max_attempts)
    return job


async def complete(session: AsyncSession, job_id: str) -> Job:
    job = await session.get(Job, job_id)
    if job is None:
        raise NotFoundError("Job not found")
    job.status = JobStatus.COMPLETED
    job.error = None
    job.completed_at = utcnow()
    await session.flush()
    return job


async def fail(
    session: AsyncSession,
    job_id: str,
    error: str,
    retry_delay_seconds: Optional[float] = None,
    permanent: bool = False,
) -> Job:
    """Record a failed attempt.

    The job goes back to ``pending`` with an exponentially growing
    ``run_after`` while attempts remain, otherwise it is marked ``failed``.
    """
    job = await session.get(Job, job_id)
    if job is None:
        raise NotFoundError("Job not found")

    job.error = error
    now = utcnow()

    if permanent or not job.has_attempts_left:
        job.status = JobStatus.FAILED
        job.completed_at = now
        logger.error("Job %s failed after %d attempts: %s", job.id, job.attempts, error)
    else:
        base = (
            retry_delay_seconds
            if retry_delay_seconds is not None
            else config.JOB_RETRY_DELAY_SECONDS
        )
        delay = base * (2 ** (job.attempts - 1))
        job.status = JobStatus.PENDING
        job.run_after = now + timedelta(seconds=delay)
        logger.warning(
            "Job %s attempt %d/%d failed: %s. Retrying in %.1fs",
            job.id, job.attempts, job.max_attempts, error, delay,
        )

    await session.flush()
    return job


async def list_jobs(
    session: AsyncSession,
    status: Optional[JobStatus] = None,
    lead_id: Optional[str] = None,
    limit: int = 100,
) -> list[Job]:
    query = select(Job)
    if status is not None:
        query = query.where(Job.status == status)
    if lead_id is not None:
        query = query.where(Job.lead_id == lead_id)
    result = await session.execute(
        query.order_by(Job.created_at.desc()).limit(limit)
    )
    return list(result.scalars().all())
