"""Health check endpoint."""

from fastapi import APIRouter, Request
from sqlalchemy import text

from alexandria.core.logging import get_logger
from alexandria.schemas.health import HealthResponse

logger = get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Check application health.

    Returns:
        Health status, application version and database reachability.
    """
    database = "connected"
    try:
        async with request.app.state.pipeline.session_maker() as db:
            await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("health_database_unreachable", error=str(e))
        database = "disconnected"

    return HealthResponse(
        status="ok" if database == "connected" else "degraded",
        version=request.app.state.settings.version,
        database=database,
    )
