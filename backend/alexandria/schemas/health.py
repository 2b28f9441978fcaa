"""Health check schemas."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Process liveness plus database reachability."""

    status: Literal["ok", "degraded"]
    version: str
    database: Literal["connected", "disconnected"]
