"""FastAPI application entry point."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine

from alexandria.api.router import api_router
from alexandria.core.config import Settings, settings
from alexandria.core.logging import get_logger, setup_logging
from alexandria.db.base import Base
from alexandria.db.session import create_engine, create_session_maker, get_database_url
from alexandria.services.pipeline import build_pipeline
from alexandria.workers.manager import create_worker_manager

logger = get_logger(__name__)


def create_app(
    config: Settings | None = None,
    *,
    engine: AsyncEngine | None = None,
    start_workers: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Settings to run with; defaults to the environment.
        engine: Database engine; defaults to one built from ``config``.
        start_workers: Run the worker pools inside the application lifespan.
    """
    config = config or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan events."""
        setup_logging(config)
        logger.info(
            "starting_application",
            app_name=config.app_name,
            version=config.version,
            host=config.host,
            port=config.port,
        )

        db_engine = engine or create_engine(get_database_url(config), echo=config.debug)
        async with db_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        for path in (config.storage_path, config.temp_path, config.thumbnails_path):
            path.mkdir(parents=True, exist_ok=True)

        pipeline = build_pipeline(config, create_session_maker(db_engine))
        manager = create_worker_manager(pipeline)
        app.state.pipeline = pipeline
        app.state.worker_manager = manager

        manager_task: asyncio.Task | None = None
        if start_workers:
            manager_task = asyncio.create_task(manager.start(), name="worker-manager")

        try:
            yield
        finally:
            logger.info("shutting_down_application")
            if manager_task is not None:
                await manager.stop()
                await manager_task
            if engine is None:
                await db_engine.dispose()

    app = FastAPI(
        title=config.app_name,
        description="Self-hosted library for 3D-printable model archives",
        version=config.version,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )
    app.state.settings = config

    app.include_router(api_router)

    return app


# Create the application instance
app = create_app()


def main() -> None:
    """Run the application with uvicorn."""
    import uvicorn

    uvicorn.run(
        "alexandria.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
