"""Health Check Endpoint."""

import time
from datetime import datetime
from typing import Optional

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel, Field
from sqlalchemy import text

from etocal.core.config import settings

logger = structlog.get_logger(__name__)

router = APIRouter()


class ComponentHealth(BaseModel):
    name: str
    status: str  # healthy, degraded, unhealthy
    latency_ms: Optional[float] = None
    message: Optional[str] = None


class HealthResponse(BaseModel):
    status: str = Field(description="Overall health status")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    version: str = settings.app_version
    components: list[ComponentHealth] = Field(default_factory=list)


async def check_database(session_factory) -> ComponentHealth:
    """Run a trivial query through the session factory."""
    start = time.perf_counter()
    try:
        async with session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
        latency = (time.perf_counter() - start) * 1000
        return ComponentHealth(
            name="database",
            status="healthy" if latency < 100 else "degraded",
            latency_ms=round(latency, 2),
        )
    except Exception as e:
        latency = (time.perf_counter() - start) * 1000
        logger.error("database_health_check_failed", error=str(e))
        return ComponentHealth(
            name="database",
            status="unhealthy",
            latency_ms=round(latency, 2),
            message=f"Database error: {str(e)[:100]}",
        )


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health_check(request: Request) -> HealthResponse:
    """
    Service health. The database is checked only when the app runs against
    PostgreSQL; an in-memory store is always healthy.
    """
    components = []
    session_factory = getattr(request.app.state, "session_factory", None)
    if session_factory is not None:
        components.append(await check_database(session_factory))

    if any(c.status == "unhealthy" for c in components):
        overall = "unhealthy"
    elif any(c.status == "degraded" for c in components):
        overall = "degraded"
    else:
        overall = "healthy"

    return HealthResponse(status=overall, components=components)
