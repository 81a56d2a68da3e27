from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request, Response

from opsboard.config import get_settings
from opsboard.observability.metrics import MetricsRegistry


router = APIRouter(tags=["metrics"])


@router.get("/metrics")
async def metrics(request: Request) -> Response:
    settings = get_settings()
    if not settings.enable_metrics_endpoint:
        raise HTTPException(status_code=404, detail="Not found")

    registry: MetricsRegistry = request.app.state.metrics
    return Response(
        content=registry.snapshot(),
        media_type=registry.content_type,
        headers={"Cache-Control": "no-store"},
    )
