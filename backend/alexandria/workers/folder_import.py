"""Folder-import worker for importing existing directory trees."""

from __future__ import annotations

from typing import Any

from alexandria.core.logging import get_logger
from alexandria.db.models import Job, JobType
from alexandria.schemas.jobs import FolderImportJobPayload
from alexandria.services.ingestion import IngestionService
from alexandria.services.job_queue import ProgressCallback
from alexandria.workers.base import BaseWorker, NonRetryableError

logger = get_logger(__name__)


class FolderImportWorker(BaseWorker):
    """Worker for the ``IMPORT_FOLDER`` lane.

    A job fans out sequentially over every model directory it discovers, so
    the manager runs exactly one of these. Per-model failures are recorded in
    the job result rather than failing the job.
    """

    job_types = [JobType.IMPORT_FOLDER]

    def __init__(self, *, ingestion: IngestionService, **kwargs: Any):
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

        data = FolderImportJobPayload.model_validate(payload)
        return await self.ingestion.process_folder_import_job(job.id, data, report_progress)

    async def on_attempts_exhausted(
        self,
        job: Job,
        payload: dict[str, Any] | None,
        error: BaseException,
    ) -> None:
        logger.error(
            "folder_import_attempts_exhausted",
            job_id=job.id,
            source_path=(payload or {}).get("source_path"),
            error=str(error),
        )
