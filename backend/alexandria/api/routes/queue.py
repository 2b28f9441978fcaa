"""Queue API endpoint for observing the job queue and worker pools."""

from __future__ import annotations

from fastapi import APIRouter, Request

from alexandria.schemas.queue import QueueStatsResponse

router = APIRouter(prefix="/queue", tags=["queue"])


@router.get("", response_model=QueueStatsResponse)
async def get_queue_stats(request: Request) -> QueueStatsResponse:
    """Job counts by status and active counts by lane, plus worker stats."""
    stats = await request.app.state.worker_manager.get_stats()
    return QueueStatsResponse(
        by_status=stats["queue"]["by_status"],
        by_type=stats["queue"]["by_type"],
        total=stats["queue"]["total"],
        manager=stats["manager"],
        workers=stats["workers"],
    )
