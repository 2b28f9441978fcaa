"""API router that aggregates all routes."""

from fastapi import APIRouter

from alexandria.api.routes import health, queue

api_router = APIRouter(prefix="/api")

api_router.include_router(health.router)

# V1 API routes
v1_router = APIRouter(prefix="/v1")
v1_router.include_router(queue.router)

api_router.include_router(v1_router)
