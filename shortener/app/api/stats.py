"""Statistics and health endpoints."""

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field
from sqlalchemy import text

from shortener.app.core.dependencies import LimiterDep
from shortener.app.core.logging import get_logger
from shortener.app.db.crud import get_stats
from shortener.app.db.dependencies import SessionDep

logger = get_logger(__name__)

router = APIRouter(tags=["stats"])


class ResourceInfoResponse(BaseModel):
    resource: str
    url_count: int


class StatsResponse(BaseModel):
    total_url_count: int = 0
    url_per_minute: int = 0
    day_peak: int = 0
    leaders: list[ResourceInfoResponse] = Field(default_factory=list)
    updated_at: Optional[datetime] = None


@router.get("/stats", response_model=StatsResponse)
async def stats(session: SessionDep, limiter: LimiterDep) -> StatsResponse:
    """Return the last persisted snapshot with the live request rate.

    Counts and leaders are as fresh as the last analytics tick.
    """
    snapshot = await get_stats(session)
    if snapshot is None:
        return StatsResponse(url_per_minute=limiter.get_rate())

    return StatsResponse(
        total_url_count=snapshot.total_url_count,
        url_per_minute=limiter.get_rate(),
        day_peak=snapshot.day_peak,
        leaders=[ResourceInfoResponse(**leader) for leader in snapshot.leaders or []],
        updated_at=snapshot.updated_at,
    )


@router.get("/health")
async def health(request: Request, session: SessionDep, limiter: LimiterDep) -> dict[str, Any]:
    """Health check with database, limiter and scheduler status."""
    health_status: dict[str, Any] = {
        "status": "ok",
        "components": {}
    }

    # Check database health
    try:
        await session.execute(text("SELECT 1"))
        health_status["components"]["database"] = {"status": "ok"}
    except Exception as e:
        health_status["status"] = "degraded"
        health_status["components"]["database"] = {
            "status": "error",
            "error": str(e)[:100]  # Truncate for security
        }

    config = limiter.config
    health_status["components"]["rate_limiter"] = {
        "status": "locked" if limiter.locked else "ok",
        "rate": limiter.get_rate(),
        "day_peak": limiter.get_peak_rate(),
        "limit": config.rate_limit,
        "buffer": config.rate_buffer,
        "time_frame_seconds": config.time_frame.total_seconds(),
    }

    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is not None:
        health_status["components"]["scheduler"] = {
            "status": "ok" if scheduler.running else "stopped",
            "jobs": {
                job.name: {
                    "next_run": job.next_run.isoformat() if job.next_run else None,
                    "runs": job.runs,
                    "failures": job.failures,
                }
                for job in scheduler.jobs
            },
        }

    return health_status
