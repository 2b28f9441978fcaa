"""Tests for the ingestion and folder-import workers and the worker manager."""

from __future__ import annotations

import asyncio
import json

import pytest
from pydantic import ValidationError
from sqlalchemy import update

from alexandria.core.exceptions import (
    ArchiveIOError,
    CorruptArchiveError,
    InvalidConfigurationError,
    PathEscapeError,
)
from alexandria.db.models import Job, JobStatus, JobType, ModelStatus
from alexandria.schemas.jobs import IngestionJobPayload
from alexandria.services import ingestion as ingestion_module
from alexandria.services.job_queue import JobQueueService
from alexandria.workers import (
    FolderImportWorker,
    IngestArchiveWorker,
    NonRetryableError,
    RetryableError,
    create_worker_manager,
    is_retryable,
)


@pytest.fixture
def ingest_worker(pipeline, session_maker, settings):
    return IngestArchiveWorker(
        ingestion=pipeline.ingestion,
        session_maker=session_maker,
        poll_interval=0.01,
        backoff_base_seconds=settings.job_backoff_base_seconds,
        backoff_max_seconds=settings.job_backoff_max_seconds,
    )


@pytest.fixture
def folder_worker(pipeline, session_maker):
    return FolderImportWorker(
        ingestion=pipeline.ingestion,
        session_maker=session_maker,
        poll_interval=0.01,
    )


@pytest.fixture
def upload(make_zip, sample_png):
    return make_zip({"dragon.stl": b"solid dragon", "preview.png": sample_png}, name="Dragon.zip")


async def _get_job(session_maker, job_id: str) -> Job:
    async with session_maker() as db:
        return await JobQueueService(db).get_job(job_id)


async def _clear_backoff(session_maker) -> None:
    async with session_maker() as db:
        await db.execute(update(Job).values(next_retry_at=None))
        await db.commit()


# =============================================================================
# Retry classification
# =============================================================================


class TestIsRetryable:
    """Tests for is_retryable."""

    @pytest.mark.parametrize(
        "error",
        [
            ArchiveIOError("disk full"),
            OSError("transient"),
            RuntimeError("unexpected"),
            RetryableError("again"),
        ],
    )
    def test_retryable(self, error):
        assert is_retryable(error)

    @pytest.mark.parametrize(
        "error",
        [
            CorruptArchiveError("bad zip"),
            PathEscapeError("escape"),
            InvalidConfigurationError("bad template"),
            NonRetryableError("stop"),
        ],
    )
    def test_not_retryable(self, error):
        assert not is_retryable(error)

    def test_validation_error_not_retryable(self):
        with pytest.raises(ValidationError) as exc_info:
            IngestionJobPayload.model_validate({})
        assert not is_retryable(exc_info.value)


# =============================================================================
# Ingest worker
# =============================================================================


class TestIngestArchiveWorker:
    """Tests for IngestArchiveWorker.run_once."""

    @pytest.mark.asyncio
    async def test_empty_lane(self, ingest_worker):
        assert await ingest_worker.run_once() is False

    @pytest.mark.asyncio
    async def test_processes_job(self, ingest_worker, pipeline, session_maker, upload):
        model_id, job_id = await pipeline.ingestion.handle_upload(upload, "Dragon.zip", "user-1")

        assert await ingest_worker.run_once() is True

        job = await _get_job(session_maker, job_id)
        assert job.status is JobStatus.SUCCESS
        assert job.progress == 100
        assert job.attempts == 1
        assert json.loads(job.result_json)["file_count"] == 2

        model = await pipeline.models.get_model_by_id(model_id)
        assert model.status is ModelStatus.READY
        assert ingest_worker.stats["jobs_processed"] == 1

    @pytest.mark.asyncio
    async def test_ignores_other_lanes(self, ingest_worker, pipeline, tmp_path):
        await pipeline.ingestion.handle_folder_import(tmp_path, "{model}", "copy", "user-1")

        assert await ingest_worker.run_once() is False

    @pytest.mark.asyncio
    async def test_corrupt_archive_fails_without_retry(
        self, ingest_worker, pipeline, session_maker, tmp_path
    ):
        archive = tmp_path / "broken.zip"
        archive.write_bytes(b"PK\x03\x04 not really")
        model_id, job_id = await pipeline.ingestion.handle_upload(archive, "broken.zip", "user-1")

        await ingest_worker.run_once()

        job = await _get_job(session_maker, job_id)
        assert job.status is JobStatus.FAILED
        assert job.attempts == 1
        assert job.last_error
        model = await pipeline.models.get_model_by_id(model_id)
        assert model.status is ModelStatus.ERROR
        # Safety net discards the upload
        assert not archive.exists()

    @pytest.mark.asyncio
    async def test_io_errors_retry_then_fail(
        self, ingest_worker, pipeline, session_maker, upload, monkeypatch
    ):
        async def _disk_full(strategy, source, target):
            raise OSError(28, "No space left on device")

        monkeypatch.setattr(ingestion_module, "place", _disk_full)
        model_id, job_id = await pipeline.ingestion.handle_upload(upload, "Dragon.zip", "user-1")

        await ingest_worker.run_once()

        job = await _get_job(session_maker, job_id)
        assert job.status is JobStatus.QUEUED
        assert job.next_retry_at is not None
        assert (await pipeline.models.get_model_by_id(model_id)).status is ModelStatus.PROCESSING

        for _ in range(2):
            await _clear_backoff(session_maker)
            assert await ingest_worker.run_once() is True

        job = await _get_job(session_maker, job_id)
        assert job.status is JobStatus.FAILED
        assert job.attempts == 3
        assert (await pipeline.models.get_model_by_id(model_id)).status is ModelStatus.ERROR
        assert not upload.exists()

    @pytest.mark.asyncio
    async def test_invalid_payload_fails_immediately(self, ingest_worker, session_maker):
        async with session_maker() as db:
            job = await JobQueueService(db).enqueue(
                JobType.INGEST_ARCHIVE, payload={"model_id": "m1"}, max_attempts=3
            )
            await db.commit()

        await ingest_worker.run_once()

        job = await _get_job(session_maker, job.id)
        assert job.status is JobStatus.FAILED
        assert job.attempts == 1

    @pytest.mark.asyncio
    async def test_missing_payload_fails_immediately(self, ingest_worker, session_maker):
        async with session_maker() as db:
            job = await JobQueueService(db).enqueue(JobType.INGEST_ARCHIVE)
            await db.commit()

        await ingest_worker.run_once()

        job = await _get_job(session_maker, job.id)
        assert job.status is JobStatus.FAILED


# =============================================================================
# Progress
# =============================================================================


class TestProgressReporter:
    """Tests for the per-job progress callback."""

    @pytest.mark.asyncio
    async def test_progress_is_monotonic(self, ingest_worker, session_maker):
        async with session_maker() as db:
            job = await JobQueueService(db).enqueue(JobType.INGEST_ARCHIVE)
            await db.commit()

        report = ingest_worker._progress_reporter(job.id)
        await report(50)
        await report(20)

        assert (await _get_job(session_maker, job.id)).progress == 50

        await report(75)
        assert (await _get_job(session_maker, job.id)).progress == 75


# =============================================================================
# Folder-import worker
# =============================================================================


class TestFolderImportWorker:
    """Tests for FolderImportWorker.run_once."""

    @pytest.mark.asyncio
    async def test_processes_job(self, folder_worker, pipeline, session_maker, tmp_path):
        source = tmp_path / "source"
        (source / "Dragon").mkdir(parents=True)
        (source / "Dragon" / "dragon.stl").write_bytes(b"solid")
        job_id = await pipeline.ingestion.handle_folder_import(source, "{model}", "copy", "user-1")

        assert await folder_worker.run_once() is True

        job = await _get_job(session_maker, job_id)
        assert job.status is JobStatus.SUCCESS
        result = json.loads(job.result_json)
        assert result["imported"] == 1
        assert result["discovered"] == 1


# =============================================================================
# Manager
# =============================================================================


class TestWorkerManager:
    """Tests for create_worker_manager and WorkerManager."""

    @pytest.mark.asyncio
    async def test_registers_both_lanes(self, pipeline, settings):
        manager = create_worker_manager(pipeline)

        stats = await manager.get_stats()

        lanes = [w["job_types"] for w in stats["workers"]]
        assert lanes.count(["INGEST_ARCHIVE"]) == settings.ingestion_concurrency
        assert lanes.count(["IMPORT_FOLDER"]) == 1
        assert stats["manager"]["worker_count"] == len(lanes)

    @pytest.mark.asyncio
    async def test_stats(self, pipeline):
        manager = create_worker_manager(pipeline)

        stats = await manager.get_stats()

        assert stats["manager"]["running"] is False
        assert stats["manager"]["uptime_seconds"] == 0
        assert stats["queue"]["total"] == 0

    @pytest.mark.asyncio
    async def test_restart_after_last_attempt_marks_model_error(
        self, pipeline, session_maker, upload
    ):
        model_id, job_id = await pipeline.ingestion.handle_upload(upload, "Dragon.zip", "user-1")
        async with session_maker() as db:
            await db.execute(update(Job).values(max_attempts=1))
            await JobQueueService(db).dequeue()
            await db.commit()

        # A fresh manager sees the job still RUNNING, as after a crash
        manager = create_worker_manager(pipeline)
        task = asyncio.create_task(manager.start())
        for _ in range(200):
            model = await pipeline.models.get_model_by_id(model_id)
            if model.status is not ModelStatus.PROCESSING:
                break
            await asyncio.sleep(0.05)
        await manager.stop()
        await asyncio.wait_for(task, timeout=10)

        job = await _get_job(session_maker, job_id)
        assert job.status is JobStatus.FAILED
        assert job.attempts == 1
        assert model.status is ModelStatus.ERROR
        assert not upload.exists()

    @pytest.mark.asyncio
    async def test_restart_with_attempts_left_requeues(self, pipeline, session_maker, upload):
        model_id, job_id = await pipeline.ingestion.handle_upload(upload, "Dragon.zip", "user-1")
        async with session_maker() as db:
            await JobQueueService(db).dequeue()
            await db.commit()

        manager = create_worker_manager(pipeline)
        task = asyncio.create_task(manager.start())
        for _ in range(200):
            model = await pipeline.models.get_model_by_id(model_id)
            if model.status is ModelStatus.READY:
                break
            await asyncio.sleep(0.05)
        await manager.stop()
        await asyncio.wait_for(task, timeout=10)

        job = await _get_job(session_maker, job_id)
        assert model.status is ModelStatus.READY
        assert job.status is JobStatus.SUCCESS
        assert job.attempts == 2

    async def test_start_and_stop(self, pipeline, upload):
        model_id, _ = await pipeline.ingestion.handle_upload(upload, "Dragon.zip", "user-1")
        manager = create_worker_manager(pipeline)

        task = asyncio.create_task(manager.start())
        for _ in range(200):
            model = await pipeline.models.get_model_by_id(model_id)
            if model.status is ModelStatus.READY:
                break
            await asyncio.sleep(0.05)

        await manager.stop()
        await asyncio.wait_for(task, timeout=10)

        assert model.status is ModelStatus.READY
        assert not manager.is_running
