"""Worker manager running both ingestion lanes."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Type

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from alexandria.core.logging import get_logger
from alexandria.db.models import Job, JobType
from alexandria.services.job_queue import JobQueueService
from alexandria.services.pipeline import Pipeline
from alexandria.workers.base import BaseWorker, RetryableError
from alexandria.workers.folder_import import FolderImportWorker
from alexandria.workers.ingest import IngestArchiveWorker

logger = get_logger(__name__)


class WorkerManager:
    """Owns the worker tasks for every lane.

    On start it recovers jobs left RUNNING by a previous process, then runs
    each worker in its own task plus a maintenance loop that re-queues stale
    jobs. Jobs found without attempts left are handed to the safety net of
    the worker that owns their lane.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        stale_job_check_interval: int = 300,
        stale_job_threshold_minutes: int = 60,
        shutdown_timeout: float = 30.0,
    ):
        self.session_maker = session_maker
        self.stale_job_check_interval = stale_job_check_interval
        self.stale_job_threshold_minutes = stale_job_threshold_minutes
        self.shutdown_timeout = shutdown_timeout

        self._workers: list[BaseWorker] = []
        self._tasks: list[asyncio.Task] = []
        self._maintenance: asyncio.Task | None = None
        self._stopped = asyncio.Event()
        self._running = False
        self._started_at: datetime | None = None

    def register_worker(self, worker_class: Type[BaseWorker], *, count: int = 1, **kwargs: Any) -> None:
        """Create ``count`` instances of ``worker_class`` sharing ``kwargs``."""
        for index in range(1, count + 1):
            worker = worker_class(
                worker_id=f"{worker_class.__name__}-{index}",
                session_maker=self.session_maker,
                **kwargs,
            )
            self._workers.append(worker)
            logger.info(
                "worker_registered",
                worker_id=worker.worker_id,
                job_types=[jt.value for jt in worker.job_types],
            )

    async def start(self) -> None:
        """Run every registered worker until ``stop`` is called."""
        if self._running:
            logger.warning("worker_manager_already_running")
            return

        self._running = True
        self._started_at = datetime.now(timezone.utc)

        await self._recover_orphaned_jobs()

        self._tasks = [
            asyncio.create_task(worker.run(), name=f"worker-{worker.worker_id}")
            for worker in self._workers
        ]
        self._maintenance = asyncio.create_task(self._maintenance_loop(), name="worker-maintenance")
        logger.info("worker_manager_started", worker_count=len(self._workers))

        await self._stopped.wait()
        self._running = False
        await self._shutdown_workers()

    async def stop(self) -> None:
        """Request graceful shutdown; safe to call before ``start``."""
        logger.info("worker_manager_stopping", running=self._running)
        self._running = False
        self._stopped.set()

    async def _shutdown_workers(self) -> None:
        for worker in self._workers:
            worker.request_shutdown()

        if self._maintenance:
            self._maintenance.cancel()
            try:
                await self._maintenance
            except asyncio.CancelledError:
                pass

        if self._tasks:
            done, pending = await asyncio.wait(self._tasks, timeout=self.shutdown_timeout)
            if pending:
                logger.warning("worker_shutdown_timeout", pending_workers=len(pending))
                for task in pending:
                    task.cancel()

        logger.info("worker_manager_shutdown_complete")

    async def _maintenance_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.stale_job_check_interval)
                if self._running:
                    await self._requeue_stale_jobs()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("maintenance_loop_error", error=str(e), exc_info=True)

    async def _recover_orphaned_jobs(self) -> None:
        async with self.session_maker() as db:
            _, exhausted = await JobQueueService(db).recover_orphaned_jobs()
            await db.commit()

        await self._run_safety_nets(exhausted)

    async def _requeue_stale_jobs(self) -> None:
        async with self.session_maker() as db:
            count, exhausted = await JobQueueService(db).requeue_stale_jobs(
                stale_minutes=self.stale_job_threshold_minutes,
            )
            await db.commit()

        if count > 0:
            logger.info("stale_jobs_recovered", count=count)
        await self._run_safety_nets(exhausted)

    async def _run_safety_nets(self, jobs: list[Job]) -> None:
        """Finish jobs that ran out of attempts outside a worker's own error path."""
        for job in jobs:
            worker = self._worker_for(job.type)
            if worker is None:
                logger.warning("no_worker_for_exhausted_job", job_id=job.id, job_type=job.type.value)
                continue
            error = RetryableError(job.last_error or "Job interrupted")
            await worker.run_safety_net(job, JobQueueService.get_payload(job), error)

    def _worker_for(self, job_type: JobType) -> BaseWorker | None:
        return next((w for w in self._workers if job_type in w.job_types), None)

    async def get_stats(self) -> dict[str, Any]:
        """Queue counts plus a snapshot of the manager and each worker."""
        async with self.session_maker() as db:
            queue_stats = await JobQueueService(db).get_queue_stats()

        uptime = 0
        if self._started_at:
            uptime = int((datetime.now(timezone.utc) - self._started_at).total_seconds())

        return {
            "manager": {
                "running": self._running,
                "worker_count": len(self._workers),
                "uptime_seconds": uptime,
            },
            "queue": queue_stats,
            "workers": [w.stats for w in self._workers],
        }

    @property
    def is_running(self) -> bool:
        return self._running


def create_worker_manager(pipeline: Pipeline) -> WorkerManager:
    """Build a manager with both lanes registered.

    Ingestion runs ``ingestion_concurrency`` parallel workers. Folder imports
    run on exactly one worker because each job already fans out over many
    models that may share destination directories.
    """
    config = pipeline.settings
    manager = WorkerManager(
        pipeline.session_maker,
        stale_job_threshold_minutes=config.stale_job_minutes,
    )

    common = {
        "ingestion": pipeline.ingestion,
        "poll_interval": config.worker_poll_interval,
        "backoff_base_seconds": config.job_backoff_base_seconds,
        "backoff_max_seconds": config.job_backoff_max_seconds,
    }
    manager.register_worker(IngestArchiveWorker, count=config.ingestion_concurrency, **common)
    manager.register_worker(FolderImportWorker, count=config.folder_import_concurrency, **common)

    return manager
