"""Pydantic schemas for the queue API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class WorkerManagerStats(BaseModel):
    running: bool
    worker_count: int
    uptime_seconds: int


class WorkerStats(BaseModel):
    """Snapshot of one worker."""

    worker_id: str
    job_types: list[str]
    is_running: bool
    is_processing: bool
    current_job_id: str | None = None
    jobs_processed: int = 0
    jobs_failed: int = 0
    uptime_seconds: int = 0


class QueueStatsResponse(BaseModel):
    """Job counts by status, active counts by lane, and worker snapshots."""

    by_status: dict[str, int] = Field(default_factory=dict)
    by_type: dict[str, int] = Field(default_factory=dict)
    total: int = 0
    manager: WorkerManagerStats
    workers: list[WorkerStats] = Field(default_factory=list)
