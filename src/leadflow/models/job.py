"""Job queue SQLAlchemy model.

Rows are claimed by ``leadflow.worker.JobWorker``. A failed attempt puts the
row back to ``pending`` with a later ``run_after`` until ``max_attempts`` is
reached.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Enum as SQLEnum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from . import Base, isoformat, utcnow


class JobType(str, Enum):
    """Kinds of background work."""

    SCRAPE_LEAD = "scrape_lead"


class JobStatus(str, Enum):
    """Queue state of a job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class Job(Base):
    """A queued unit of background work.

    Attributes:
        id: Unique identifier (UUID).
        job_type: What to run.
        lead_id: Lead the job works on.
        status: Queue state.
        attempts: Number of times the job has been claimed.
        max_attempts: Attempts allowed before the job fails permanently.
        error: Last error message.
        run_after: Earliest time the job may be claimed.
    """

    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    job_type: Mapped[JobType] = mapped_column(
        SQLEnum(JobType, name="job_type"),
        nullable=False
    )
    lead_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("leads.id"), nullable=True, index=True
    )
    status: Mapped[JobStatus] = mapped_column(
        SQLEnum(JobStatus, name="job_status"),
        nullable=False,
        default=JobStatus.PENDING,
        index=True
    )

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    run_after: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Job(id={self.id!r}, type={self.job_type.value!r}, "
            f"status={self.status.value!r}, attempts={self.attempts})>"
        )

    @property
    def has_attempts_left(self) -> bool:
        return self.attempts < self.max_attempts

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "job_type": self.job_type.value,
            "lead_id": self.lead_id,
            "status": self.status.value,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "error": self.error,
            "run_after": isoformat(self.run_after),
            "created_at": isoformat(self.created_at),
            "started_at": isoformat(self.started_at),
            "completed_at": isoformat(self.completed_at),
        }
