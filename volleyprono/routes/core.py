"""Core routes: health and Prometheus metrics."""

from fastapi import APIRouter, Request
from fastapi.responses import Response
from pydantic import BaseModel

from volleyprono.scheduler import scheduler
from volleyprono.security import limiter
from volleyprono.telemetry.metrics import get_metrics_text

router = APIRouter(tags=["core"])


class HealthResponse(BaseModel):
    status: str
    scheduler_running: bool


@router.get("/health", response_model=HealthResponse)
@limiter.limit("120/minute")
async def health_check(request: Request):
    """Health check endpoint."""
    return HealthResponse(status="ok", scheduler_running=scheduler.running)


@router.get("/metrics")
async def metrics():
    """Prometheus scrape endpoint (low-cardinality labels only)."""
    content, content_type = get_metrics_text()
    return Response(content=content, media_type=content_type)
