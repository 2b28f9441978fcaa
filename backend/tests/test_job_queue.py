"""Tests for JobQueueService - job queue management."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from alexandria.db.base import Base
from alexandria.db.models import Job, JobStatus, JobType
from alexandria.services.job_queue import JobQueueService, calculate_retry_delay


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
async def memory_engine():
    """Create an in-memory test database engine."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(memory_engine):
    """Create a test database session."""
    async_session = async_sessionmaker(
        memory_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with async_session() as session:
        yield session


# =============================================================================
# Backoff
# =============================================================================


class TestCalculateRetryDelay:
    """Tests for calculate_retry_delay."""

    def test_doubles_per_attempt(self):
        assert calculate_retry_delay(1, 1.0, 300.0) == 1.0
        assert calculate_retry_delay(2, 1.0, 300.0) == 2.0
        assert calculate_retry_delay(3, 1.0, 300.0) == 4.0

    def test_capped(self):
        assert calculate_retry_delay(20, 1.0, 300.0) == 300.0


# =============================================================================
# Enqueue Tests
# =============================================================================


class TestEnqueue:
    """Tests for enqueue method."""

    @pytest.mark.asyncio
    async def test_enqueue_creates_job(self, db_session):
        """Test that enqueue creates a new job."""
        service = JobQueueService(db_session)

        job = await service.enqueue(JobType.INGEST_ARCHIVE, payload={"model_id": "m1"})

        assert job.id is not None
        assert job.type == JobType.INGEST_ARCHIVE
        assert job.status == JobStatus.QUEUED
        assert job.attempts == 0
        assert job.progress == 0
        assert service.get_payload(job) == {"model_id": "m1"}

    @pytest.mark.asyncio
    async def test_enqueue_without_payload(self, db_session):
        service = JobQueueService(db_session)

        job = await service.enqueue(JobType.IMPORT_FOLDER)

        assert job.payload_json is None
        assert service.get_payload(job) is None

    @pytest.mark.asyncio
    async def test_enqueue_sets_max_attempts(self, db_session):
        service = JobQueueService(db_session)

        job = await service.enqueue(JobType.INGEST_ARCHIVE, max_attempts=5)

        assert job.max_attempts == 5
        assert job.attempts_remaining == 5


# =============================================================================
# Dequeue Tests
# =============================================================================


class TestDequeue:
    """Tests for dequeue method."""

    @pytest.mark.asyncio
    async def test_dequeue_claims_job(self, db_session):
        service = JobQueueService(db_session)
        queued = await service.enqueue(JobType.INGEST_ARCHIVE)

        job = await service.dequeue()

        assert job is not None
        assert job.id == queued.id
        assert job.status == JobStatus.RUNNING
        assert job.attempts == 1
        assert job.started_at is not None

    @pytest.mark.asyncio
    async def test_dequeue_empty_queue(self, db_session):
        service = JobQueueService(db_session)

        assert await service.dequeue() is None

    @pytest.mark.asyncio
    async def test_dequeue_filters_by_lane(self, db_session):
        service = JobQueueService(db_session)
        await service.enqueue(JobType.IMPORT_FOLDER)

        assert await service.dequeue([JobType.INGEST_ARCHIVE]) is None
        job = await service.dequeue([JobType.IMPORT_FOLDER])
        assert job is not None
        assert job.type == JobType.IMPORT_FOLDER

    @pytest.mark.asyncio
    async def test_dequeue_respects_priority(self, db_session):
        service = JobQueueService(db_session)
        await service.enqueue(JobType.INGEST_ARCHIVE, priority=0, display_name="low")
        await service.enqueue(JobType.INGEST_ARCHIVE, priority=10, display_name="high")

        job = await service.dequeue()

        assert job.display_name == "high"

    @pytest.mark.asyncio
    async def test_dequeue_skips_jobs_in_backoff(self, db_session):
        service = JobQueueService(db_session)
        job = await service.enqueue(JobType.INGEST_ARCHIVE)
        job.next_retry_at = datetime.now(timezone.utc) + timedelta(hours=1)
        await db_session.flush()

        assert await service.dequeue() is None

    @pytest.mark.asyncio
    async def test_claimed_job_not_dequeued_twice(self, db_session):
        service = JobQueueService(db_session)
        await service.enqueue(JobType.INGEST_ARCHIVE)

        first = await service.dequeue()
        second = await service.dequeue()

        assert first is not None
        assert second is None


# =============================================================================
# Complete / Fail Tests
# =============================================================================


class TestComplete:
    """Tests for complete method."""

    @pytest.mark.asyncio
    async def test_complete_success(self, db_session):
        service = JobQueueService(db_session)
        await service.enqueue(JobType.INGEST_ARCHIVE)
        job = await service.dequeue()

        completed = await service.complete(job.id, result={"file_count": 2})

        assert completed.status == JobStatus.SUCCESS
        assert completed.progress == 100
        assert completed.finished_at is not None
        assert service.get_result(completed) == {"file_count": 2}

    @pytest.mark.asyncio
    async def test_complete_unknown_job(self, db_session):
        service = JobQueueService(db_session)

        assert await service.complete("missing") is None

    @pytest.mark.asyncio
    async def test_complete_failure_delegates_to_fail(self, db_session):
        service = JobQueueService(db_session)
        await service.enqueue(JobType.INGEST_ARCHIVE)
        job = await service.dequeue()

        updated = await service.complete(job.id, success=False, error="boom")

        assert updated.status == JobStatus.QUEUED
        assert updated.last_error == "boom"


class TestFail:
    """Tests for fail method."""

    @pytest.mark.asyncio
    async def test_retryable_failure_requeues_with_backoff(self, db_session):
        service = JobQueueService(db_session, backoff_base_seconds=2.0)
        await service.enqueue(JobType.INGEST_ARCHIVE, max_attempts=3)
        job = await service.dequeue()

        before = datetime.now(timezone.utc)
        updated = await service.fail(job.id, "disk full")

        assert updated.status == JobStatus.QUEUED
        assert updated.started_at is None
        next_retry = updated.next_retry_at
        if next_retry.tzinfo is None:
            next_retry = next_retry.replace(tzinfo=timezone.utc)
        assert next_retry >= before + timedelta(seconds=2)

    @pytest.mark.asyncio
    async def test_non_retryable_failure_is_terminal(self, db_session):
        service = JobQueueService(db_session)
        await service.enqueue(JobType.INGEST_ARCHIVE, max_attempts=3)
        job = await service.dequeue()

        updated = await service.fail(job.id, "corrupt", retryable=False)

        assert updated.status == JobStatus.FAILED
        assert updated.attempts == 1
        assert updated.finished_at is not None

    @pytest.mark.asyncio
    async def test_attempts_exhausted(self, db_session):
        service = JobQueueService(db_session, backoff_base_seconds=0.0001)
        await service.enqueue(JobType.INGEST_ARCHIVE, max_attempts=2)

        job = await service.dequeue()
        await service.fail(job.id, "first")
        job.next_retry_at = None
        await db_session.flush()

        job = await service.dequeue()
        updated = await service.fail(job.id, "second")

        assert updated.status == JobStatus.FAILED
        assert updated.attempts == 2
        assert updated.last_error == "second"


# =============================================================================
# Progress and stats
# =============================================================================


class TestProgress:
    """Tests for update_progress."""

    @pytest.mark.asyncio
    async def test_update_progress(self, db_session):
        service = JobQueueService(db_session)
        job = await service.enqueue(JobType.INGEST_ARCHIVE)

        await service.update_progress(job.id, 50)
        await db_session.refresh(job)

        assert job.progress == 50

    @pytest.mark.asyncio
    async def test_progress_is_clamped(self, db_session):
        service = JobQueueService(db_session)
        job = await service.enqueue(JobType.INGEST_ARCHIVE)

        await service.update_progress(job.id, 150)
        await db_session.refresh(job)

        assert job.progress == 100


class TestQueueStats:
    """Tests for get_queue_stats."""

    @pytest.mark.asyncio
    async def test_counts_by_status_and_lane(self, db_session):
        service = JobQueueService(db_session)
        await service.enqueue(JobType.INGEST_ARCHIVE)
        await service.enqueue(JobType.INGEST_ARCHIVE)
        await service.enqueue(JobType.IMPORT_FOLDER)
        await service.dequeue([JobType.IMPORT_FOLDER])

        stats = await service.get_queue_stats()

        assert stats["by_status"] == {"QUEUED": 2, "RUNNING": 1}
        assert stats["by_type"] == {"INGEST_ARCHIVE": 2, "IMPORT_FOLDER": 1}
        assert stats["total"] == 3


# =============================================================================
# Recovery
# =============================================================================


class TestRecovery:
    """Tests for orphaned and stale job recovery."""

    @pytest.mark.asyncio
    async def test_recover_orphaned_jobs(self, db_session):
        service = JobQueueService(db_session)
        await service.enqueue(JobType.INGEST_ARCHIVE)
        await service.dequeue()

        count, exhausted = await service.recover_orphaned_jobs()

        assert count == 1
        assert exhausted == []
        result = await db_session.execute(select(Job))
        job = result.scalar_one()
        await db_session.refresh(job)
        assert job.status == JobStatus.QUEUED
        assert job.started_at is None

    @pytest.mark.asyncio
    async def test_orphan_on_last_attempt_is_failed(self, db_session):
        service = JobQueueService(db_session)
        await service.enqueue(JobType.INGEST_ARCHIVE, max_attempts=1)
        claimed = await service.dequeue()

        count, exhausted = await service.recover_orphaned_jobs()

        assert count == 0
        assert [job.id for job in exhausted] == [claimed.id]
        await db_session.refresh(claimed)
        assert claimed.status == JobStatus.FAILED
        assert claimed.finished_at is not None
        assert await service.dequeue() is None

    @pytest.mark.asyncio
    async def test_requeue_stale_jobs(self, db_session):
        service = JobQueueService(db_session)
        await service.enqueue(JobType.INGEST_ARCHIVE)
        job = await service.dequeue()
        job.started_at = datetime.now(timezone.utc) - timedelta(hours=2)
        await db_session.flush()

        count, exhausted = await service.requeue_stale_jobs(stale_minutes=60)

        assert count == 1
        assert exhausted == []

    @pytest.mark.asyncio
    async def test_stale_job_on_last_attempt_is_failed(self, db_session):
        service = JobQueueService(db_session)
        await service.enqueue(JobType.INGEST_ARCHIVE, max_attempts=1)
        job = await service.dequeue()
        job.started_at = datetime.now(timezone.utc) - timedelta(hours=2)
        await db_session.flush()

        count, exhausted = await service.requeue_stale_jobs(stale_minutes=60)

        assert count == 0
        assert [j.id for j in exhausted] == [job.id]
        await db_session.refresh(job)
        assert job.status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_recent_jobs_not_stale(self, db_session):
        service = JobQueueService(db_session)
        await service.enqueue(JobType.INGEST_ARCHIVE, max_attempts=1)
        job = await service.dequeue()

        assert await service.requeue_stale_jobs(stale_minutes=60) == (0, [])
        await db_session.refresh(job)
        assert job.status == JobStatus.RUNNING
