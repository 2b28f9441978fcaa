"""Ingest worker for single-archive ingestion jobs."""

from __future__ import annotations

from typing import Any

from alexandria.core.logging import get_logger
from alexandria.db.models import Job, JobType
from alexandria.schemas.jobs import IngestionJobPayload
from alexandria.services.ingestion import IngestionService
from alexandria.services.job_queue import ProgressCallback
from alexandria.workers.base import BaseWorker, NonRetryableError

logger = get_logger(__name__)


class IngestArchiveWorker(BaseWorker):
    """Worker for the ``INGEST_ARCHIVE`` lane.

    Processes jobs by:
    1. Extracting and hashing the uploaded archive
    2. Placing every surviving file at its resolved destination
    3. Rendering thumbnails for image files
    4. Committing files, thumbnails and the ``ready`` status

    After the last failed attempt the safety net forces the model to
    ``error`` and discards the uploaded archive.
    """

    job_types = [JobType.INGEST_ARCHIVE]

    def __init__(self, *, ingestion: IngestionService, **kwargs: Any):
        """Initialize the ingest worker.

        Args:
            ingestion: Orchestrator that runs the job body.
            **kwargs: Passed to BaseWorker.
        """
        super().__init__(**kwargs)
        self.ingestion = ingestion

    async def process(
        self,
        job: Job,
        payload: dict[str, Any] | None,
        report_progress: ProgressCallback,
    ) -> dict[str, Any] | None:
        if not payload:
            raise NonRetryableError("Job missing payload")

        data = IngestionJobPayload.model_validate(payload)
        logger.info("ingest_job_starting", job_id=job.id, model_id=data.model_id)
        return await self.ingestion.process_ingestion_job(job.id, data, report_progress)

    async def on_attempts_exhausted(
        self,
        job: Job,
        payload: dict[str, Any] | None,
        error: BaseException,
    ) -> None:
        if not payload:
            return
        data = IngestionJobPayload.model_validate(payload)
        await self.ingestion.mark_ingestion_failed(data, error)
