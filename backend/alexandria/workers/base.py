"""Base worker class for processing background jobs."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from alexandria.core.exceptions import NON_RETRYABLE_ERRORS, ArchiveIOError
from alexandria.core.logging import get_logger, job_log_context
from alexandria.db.models import Job, JobStatus, JobType
from alexandria.services.job_queue import JobQueueService, ProgressCallback

logger = get_logger(__name__)

# Payloads that fail validation never become valid on retry
_NON_RETRYABLE: tuple[type[BaseException], ...] = (*NON_RETRYABLE_ERRORS, ValidationError)


class RetryableError(Exception):
    """Exception that indicates a job should be retried.

    Use this when you want the job to be retried but with a specific
    error message.
    """

    pass


class NonRetryableError(Exception):
    """Exception that indicates a job should not be retried.

    The job will be marked as failed immediately without using
    remaining retry attempts.
    """

    pass


def is_retryable(error: BaseException) -> bool:
    """Decide whether a failed attempt should be retried."""
    if isinstance(error, NonRetryableError):
        return False
    if isinstance(error, (RetryableError, ArchiveIOError)):
        return True
    if isinstance(error, _NON_RETRYABLE):
        return False
    return True


class BaseWorker(ABC):
    """Abstract base class for background job workers.

    Subclasses must implement:
    - job_types: list of JobType values this worker handles
    - process(job, payload, report_progress): the job body

    and may override on_attempts_exhausted(), the safety net that runs
    once a job has failed for the last time.
    """

    # Subclasses must set this to the job types they handle
    job_types: list[JobType] = []

    def __init__(
        self,
        *,
        session_maker: async_sessionmaker[AsyncSession],
        poll_interval: float = 1.0,
        worker_id: str | None = None,
        backoff_base_seconds: float = 1.0,
        backoff_max_seconds: float = 300.0,
    ):
        """Initialize the worker.

        Args:
            session_maker: Factory for short-lived database sessions.
            poll_interval: Seconds to wait between polling for jobs.
            worker_id: Optional identifier for this worker instance.
            backoff_base_seconds: First retry delay for failed jobs.
            backoff_max_seconds: Cap on the retry delay.
        """
        self.session_maker = session_maker
        self.poll_interval = poll_interval
        self.worker_id = worker_id or self.__class__.__name__
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds

        self._running = False
        self._shutdown_event = asyncio.Event()
        self._current_job: Job | None = None
        self._jobs_processed = 0
        self._jobs_failed = 0
        self._started_at: datetime | None = None

    @abstractmethod
    async def process(
        self,
        job: Job,
        payload: dict[str, Any] | None,
        report_progress: ProgressCallback,
    ) -> dict[str, Any] | None:
        """Process a single job.

        The job is already claimed (status=RUNNING) when this is called.

        Args:
            job: The Job instance to process.
            payload: Parsed payload dict from job.payload_json.
            report_progress: Records a 0-100 checkpoint for this job.

        Returns:
            Optional result dict stored in the job's result_json field.

        Raises:
            Any exception fails the attempt; see is_retryable().
        """

    async def on_attempts_exhausted(
        self,
        job: Job,
        payload: dict[str, Any] | None,
        error: BaseException,
    ) -> None:
        """Safety net invoked after the final failed attempt of a job."""

    def _queue(self, db: AsyncSession) -> JobQueueService:
        return JobQueueService(
            db,
            backoff_base_seconds=self.backoff_base_seconds,
            backoff_max_seconds=self.backoff_max_seconds,
        )

    async def run(self) -> None:
        """Main worker loop.

        Polls for jobs and processes them until shutdown is requested.
        """
        self._running = True
        self._started_at = datetime.now(timezone.utc)

        logger.info(
            "worker_started",
            worker_id=self.worker_id,
            job_types=[jt.value for jt in self.job_types],
            poll_interval=self.poll_interval,
        )

        try:
            while self._running and not self._shutdown_event.is_set():
                try:
                    processed = await self.run_once()
                    if not processed:
                        await self._idle_wait()
                except Exception as e:
                    logger.error(
                        "worker_poll_error",
                        worker_id=self.worker_id,
                        error=str(e),
                        exc_info=True,
                    )
                    # Wait before retrying after unexpected error
                    await asyncio.sleep(self.poll_interval * 2)
        finally:
            self._running = False
            logger.info(
                "worker_stopped",
                worker_id=self.worker_id,
                jobs_processed=self._jobs_processed,
                jobs_failed=self._jobs_failed,
                uptime_seconds=self._uptime_seconds(),
            )

    async def _idle_wait(self) -> None:
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass

    async def run_once(self) -> bool:
        """Claim and process at most one job.

        Returns:
            True if a job was claimed, False if the lane was empty.
        """
        async with self.session_maker() as db:
            queue = self._queue(db)

            job = await queue.dequeue(self.job_types or None)
            if job is None:
                return False

            # Commit the claim before processing so process() can use its
            # own sessions without contending with this one.
            await db.commit()

            self._current_job = job
            payload = queue.get_payload(job)

            with job_log_context(job_id=job.id, job_type=job.type.value, worker_id=self.worker_id):
                try:
                    logger.info("job_processing_start", attempt=job.attempts)

                    result = await self.process(job, payload, self._progress_reporter(job.id))

                    await queue.complete(job.id, success=True, result=result)
                    self._jobs_processed += 1

                except Exception as e:
                    retryable = is_retryable(e)
                    logger.error(
                        "job_processing_error",
                        error=str(e),
                        retryable=retryable,
                        exc_info=True,
                    )

                    updated_job = await queue.fail(
                        job.id, str(e) or type(e).__name__, retryable=retryable
                    )
                    await db.commit()
                    self._jobs_failed += 1

                    if updated_job is not None and updated_job.status == JobStatus.FAILED:
                        await self.run_safety_net(updated_job, payload, e)

                finally:
                    self._current_job = None
                    await db.commit()

        return True

    async def run_safety_net(
        self, job: Job, payload: dict[str, Any] | None, error: BaseException
    ) -> None:
        try:
            await self.on_attempts_exhausted(job, payload, error)
        except Exception as e:
            logger.error(
                "safety_net_failed",
                worker_id=self.worker_id,
                job_id=job.id,
                error=str(e),
                exc_info=True,
            )

    def _progress_reporter(self, job_id: str) -> ProgressCallback:
        """Build a monotonic progress callback bound to one job."""
        last_reported = -1

        async def report_progress(percent: int) -> None:
            nonlocal last_reported
            if percent < last_reported:
                return
            last_reported = percent

            try:
                async with self.session_maker() as db:
                    await self._queue(db).update_progress(job_id, percent)
                    await db.commit()
            except Exception as e:
                # Progress updates are non-fatal
                logger.debug(
                    "progress_update_failed",
                    job_id=job_id,
                    percent=percent,
                    error=str(e),
                )

        return report_progress

    def request_shutdown(self) -> None:
        """Request graceful shutdown of the worker."""
        logger.info(
            "worker_shutdown_requested",
            worker_id=self.worker_id,
            current_job_id=self._current_job.id if self._current_job else None,
        )
        self._running = False
        self._shutdown_event.set()

    def _uptime_seconds(self) -> int:
        """Calculate worker uptime in seconds."""
        if self._started_at:
            return int((datetime.now(timezone.utc) - self._started_at).total_seconds())
        return 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_processing(self) -> bool:
        return self._current_job is not None

    @property
    def stats(self) -> dict[str, Any]:
        """Get worker statistics."""
        return {
            "worker_id": self.worker_id,
            "job_types": [jt.value for jt in self.job_types],
            "is_running": self._running,
            "is_processing": self._current_job is not None,
            "current_job_id": self._current_job.id if self._current_job else None,
            "jobs_processed": self._jobs_processed,
            "jobs_failed": self._jobs_failed,
            "uptime_seconds": self._uptime_seconds(),
        }

