"""Job queue service for managing background tasks."""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from alexandria.core.logging import get_logger
from alexandria.db.models import Job, JobStatus, JobType

logger = get_logger(__name__)

# Per-job progress hook handed to job bodies; takes a 0-100 checkpoint
ProgressCallback = Callable[[int], Awaitable[None]]


def calculate_retry_delay(
    attempts: int,
    base_seconds: float = 1.0,
    max_seconds: float = 300.0,
) -> float:
    """Exponential backoff: ``base * 2 ** (attempts - 1)``, capped.

    Args:
        attempts: Number of attempts made so far (1 after the first failure).
        base_seconds: Delay before the first retry.
        max_seconds: Upper bound on the delay.

    Returns:
        Delay in seconds before the next attempt.
    """
    return min(base_seconds * (2 ** max(attempts - 1, 0)), max_seconds)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class JobQueueService:
    """Service for managing the job queue.

    Provides methods to enqueue, dequeue, complete and fail jobs.
    Uses a database-backed queue with atomic job claiming to prevent
    double-processing.
    """

    def __init__(
        self,
        db: AsyncSession,
        *,
        backoff_base_seconds: float = 1.0,
        backoff_max_seconds: float = 300.0,
    ):
        """Initialize the job queue service.

        Args:
            db: Async database session.
            backoff_base_seconds: First retry delay.
            backoff_max_seconds: Cap on the retry delay.
        """
        self.db = db
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds

    async def enqueue(
        self,
        job_type: JobType,
        *,
        model_id: str | None = None,
        payload: dict[str, Any] | None = None,
        priority: int = 0,
        max_attempts: int = 3,
        display_name: str | None = None,
    ) -> Job:
        """Add a new job to the queue.

        Args:
            job_type: Type of job to create; selects the worker lane.
            model_id: Optional model this job relates to.
            payload: Optional JSON payload with job-specific data.
            priority: Job priority (higher = more urgent). Default 0.
            max_attempts: Maximum attempts including the first. Default 3.
            display_name: Optional human-readable label.

        Returns:
            The created Job instance.
        """
        job = Job(
            type=job_type,
            status=JobStatus.QUEUED,
            priority=priority,
            model_id=model_id,
            payload_json=json.dumps(payload) if payload else None,
            max_attempts=max_attempts,
            display_name=display_name,
            progress=0,
            attempts=0,
        )
        self.db.add(job)
        await self.db.flush()

        logger.info(
            "job_enqueued",
            job_id=job.id,
            job_type=job_type.value,
            priority=priority,
            model_id=model_id,
            display_name=display_name,
        )

        return job

    async def dequeue(
        self,
        job_types: list[JobType] | None = None,
    ) -> Job | None:
        """Atomically claim the next available job.

        Jobs waiting out a retry backoff are skipped until ``next_retry_at``.

        Args:
            job_types: Optional list of job types to consider.
                If None, considers all types.

        Returns:
            The claimed Job instance, or None if no jobs available.
        """
        now = datetime.now(timezone.utc)
        conditions = [
            Job.status == JobStatus.QUEUED,
            or_(Job.next_retry_at.is_(None), Job.next_retry_at <= now),
        ]

        if job_types:
            conditions.append(Job.type.in_(job_types))

        # Select next job by priority (desc) then created_at (asc)
        query = (
            select(Job)
            .where(and_(*conditions))
            .order_by(Job.priority.desc(), Job.created_at.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
        )

        result = await self.db.execute(query)
        job = result.scalar_one_or_none()

        if job is None:
            return None

        # Claim only if nobody else did in between
        claim = await self.db.execute(
            update(Job)
            .where(Job.id == job.id, Job.status == JobStatus.QUEUED)
            .values(
                status=JobStatus.RUNNING,
                started_at=now,
                attempts=Job.attempts + 1,
                next_retry_at=None,
            )
        )
        if claim.rowcount == 0:
            return None

        await self.db.flush()
        await self.db.refresh(job)

        logger.info(
            "job_claimed",
            job_id=job.id,
            job_type=job.type.value,
            attempt=job.attempts,
        )

        return job

    async def complete(
        self,
        job_id: str,
        *,
        success: bool = True,
        error: str | None = None,
        result: dict[str, Any] | None = None,
    ) -> Job | None:
        """Mark a job as completed.

        A failed completion delegates to :meth:`fail` as a retryable error.

        Args:
            job_id: ID of the job to complete.
            success: Whether the job succeeded.
            error: Error message if job failed.
            result: Optional result data to store.

        Returns:
            The updated Job instance, or None if not found.
        """
        if not success:
            return await self.fail(job_id, error or "unknown error", retryable=True)

        job = await self.get_job(job_id)
        if job is None:
            logger.warning("job_not_found", job_id=job_id)
            return None

        job.finished_at = datetime.now(timezone.utc)
        job.status = JobStatus.SUCCESS
        job.last_error = None
        job.progress = 100
        if result:
            job.result_json = json.dumps(result)

        await self.db.flush()

        logger.info(
            "job_completed_success",
            job_id=job_id,
            job_type=job.type.value,
            duration_ms=self._duration_ms(job),
        )
        return job

    async def fail(
        self,
        job_id: str,
        error: str,
        *,
        retryable: bool = True,
    ) -> Job | None:
        """Record a failed attempt.

        The job is re-queued with exponential backoff while attempts remain
        and the error is retryable; otherwise it is marked FAILED.

        Returns:
            The updated Job instance, or None if not found.
        """
        job = await self.get_job(job_id)
        if job is None:
            logger.warning("job_not_found", job_id=job_id)
            return None

        job.last_error = error

        if retryable and job.attempts < job.max_attempts:
            delay = calculate_retry_delay(
                job.attempts, self.backoff_base_seconds, self.backoff_max_seconds
            )
            job.status = JobStatus.QUEUED
            job.started_at = None
            job.finished_at = None
            job.next_retry_at = datetime.now(timezone.utc) + timedelta(seconds=delay)
            logger.warning(
                "job_failed_will_retry",
                job_id=job_id,
                job_type=job.type.value,
                attempt=job.attempts,
                max_attempts=job.max_attempts,
                delay_seconds=delay,
                error=error,
            )
        else:
            job.status = JobStatus.FAILED
            job.finished_at = datetime.now(timezone.utc)
            job.next_retry_at = None
            logger.error(
                "job_failed_max_attempts" if retryable else "job_failed_non_retryable",
                job_id=job_id,
                job_type=job.type.value,
                attempts=job.attempts,
                error=error,
            )

        await self.db.flush()
        return job

    async def update_progress(self, job_id: str, percent: int) -> None:
        """Record a progress checkpoint (0-100) for a running job."""
        percent = max(0, min(100, int(percent)))
        await self.db.execute(
            update(Job).where(Job.id == job_id).values(progress=percent)
        )
        await self.db.flush()

    async def get_queue_stats(self) -> dict[str, Any]:
        """Get statistics about the job queue.

        Returns:
            Dictionary with counts by status and type:
            {
                "by_status": {"QUEUED": 5, "RUNNING": 2, ...},
                "by_type": {"INGEST_ARCHIVE": 3, ...},
                "total": 10,
            }
        """
        status_result = await self.db.execute(
            select(Job.status, func.count(Job.id)).group_by(Job.status)
        )
        by_status = {row[0].value: row[1] for row in status_result.all()}

        # Count by type (only active jobs: QUEUED or RUNNING)
        type_result = await self.db.execute(
            select(Job.type, func.count(Job.id))
            .where(Job.status.in_([JobStatus.QUEUED, JobStatus.RUNNING]))
            .group_by(Job.type)
        )
        by_type = {row[0].value: row[1] for row in type_result.all()}

        return {
            "by_status": by_status,
            "by_type": by_type,
            "total": sum(by_status.values()),
        }

    async def get_job(self, job_id: str) -> Job | None:
        result = await self.db.execute(select(Job).where(Job.id == job_id))
        return result.scalar_one_or_none()

    async def recover_orphaned_jobs(self) -> tuple[int, list[Job]]:
        """Recover jobs that were running when the process stopped.

        On startup, any job in RUNNING status was interrupted by a restart.
        Jobs with attempts left go back to QUEUED; jobs that crashed on their
        last attempt are marked FAILED instead.

        Returns:
            Number of jobs re-queued, and the jobs that ran out of attempts
            so their owners can run the safety net.
        """
        interrupted = "Job interrupted by restart - auto-recovered"
        exhausted = await self._fail_exhausted(interrupted)

        result = await self.db.execute(
            update(Job)
            .where(Job.status == JobStatus.RUNNING, Job.attempts < Job.max_attempts)
            .values(
                status=JobStatus.QUEUED,
                started_at=None,
                last_error=interrupted,
            )
            .returning(Job.id, Job.type)
        )
        recovered = result.all()

        for job_id, job_type in recovered:
            logger.info(
                "orphaned_job_recovered",
                job_id=job_id,
                job_type=job_type.value if hasattr(job_type, "value") else job_type,
            )
        if recovered or exhausted:
            logger.warning(
                "orphaned_jobs_recovered_on_startup",
                count=len(recovered),
                exhausted=len(exhausted),
            )

        await self.db.flush()
        return len(recovered), exhausted

    async def requeue_stale_jobs(self, stale_minutes: int = 60) -> tuple[int, list[Job]]:
        """Re-queue jobs that have been running too long.

        This handles jobs that were claimed but never completed
        (e.g., the worker task died). Stale jobs without attempts left are
        marked FAILED.

        Returns:
            Number of jobs requeued, and the jobs that ran out of attempts.
        """
        stale_threshold = datetime.now(timezone.utc) - timedelta(minutes=stale_minutes)
        exhausted = await self._fail_exhausted(
            f"Job stale after {stale_minutes} minutes",
            Job.started_at < stale_threshold,
        )

        result = await self.db.execute(
            update(Job)
            .where(
                Job.status == JobStatus.RUNNING,
                Job.started_at < stale_threshold,
                Job.attempts < Job.max_attempts,
            )
            .values(status=JobStatus.QUEUED, started_at=None)
        )
        await self.db.flush()

        count = result.rowcount
        if count > 0 or exhausted:
            logger.warning(
                "stale_jobs_requeued",
                count=count,
                exhausted=len(exhausted),
                stale_minutes=stale_minutes,
            )
        return count, exhausted

    async def _fail_exhausted(self, error: str, *conditions: Any) -> list[Job]:
        """Mark RUNNING jobs with no attempts left as FAILED."""
        result = await self.db.execute(
            select(Job).where(
                Job.status == JobStatus.RUNNING,
                Job.attempts >= Job.max_attempts,
                *conditions,
            )
        )
        jobs = list(result.scalars().all())

        now = datetime.now(timezone.utc)
        for job in jobs:
            job.status = JobStatus.FAILED
            job.finished_at = now
            job.next_retry_at = None
            job.last_error = error
            logger.error(
                "job_failed_max_attempts",
                job_id=job.id,
                job_type=job.type.value,
                attempts=job.attempts,
                error=error,
            )

        await self.db.flush()
        return jobs

    def _duration_ms(self, job: Job) -> int | None:
        """Calculate job duration in milliseconds."""
        started = _as_utc(job.started_at)
        finished = _as_utc(job.finished_at)
        if started and finished:
            return int((finished - started).total_seconds() * 1000)
        return None

    @staticmethod
    def get_payload(job: Job) -> dict[str, Any] | None:
        """Parse and return the job's payload."""
        if not job.payload_json:
            return None
        return json.loads(job.payload_json)

    @staticmethod
    def get_result(job: Job) -> dict[str, Any] | None:
        """Parse and return the job's result."""
        if not job.result_json:
            return None
        return json.loads(job.result_json)
