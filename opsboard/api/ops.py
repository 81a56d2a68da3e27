from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Query, Request, Response
from fastapi.responses import JSONResponse

from opsboard.models.schemas import LivenessResponse, OpsStatusResponse, ReadinessResponse
from opsboard.ops.aggregator import OpsStatusAggregator


router = APIRouter(tags=["ops"])

NO_STORE = {"Cache-Control": "no-store"}


def _aggregator(request: Request) -> OpsStatusAggregator:
    return request.app.state.aggregator


@router.get("/health", response_model=LivenessResponse)
async def health(request: Request, response: Response) -> LivenessResponse:
    response.headers.update(NO_STORE)
    facts = _aggregator(request).self_facts()
    return LivenessResponse(
        ok=True,
        service=facts.service,
        uptime_seconds=facts.uptime_seconds,
        timestamp=facts.timestamp,
    )


@router.get("/ready", response_model=ReadinessResponse)
async def ready(request: Request) -> JSONResponse:
    dependency = await _aggregator(request).check_dependency()
    payload = ReadinessResponse(
        ok=dependency.ok,
        db="ok" if dependency.ok else "down",
        latency_ms=dependency.latency_ms,
        error=dependency.error,
        timestamp=datetime.now(timezone.utc),
    )
    return JSONResponse(
        content=payload.model_dump(mode="json"),
        status_code=200 if dependency.ok else 503,
        headers=NO_STORE,
    )


@router.get("/ops/status", response_model=OpsStatusResponse)
async def ops_status(
    request: Request,
    response: Response,
    range_: str | None = Query(default=None, alias="range"),
) -> OpsStatusResponse:
    # Unhealthy dependencies are reported in the body; the endpoint itself answers 200.
    response.headers.update(NO_STORE)
    report = await _aggregator(request).run()
    return OpsStatusResponse(
        ok=report.ok,
        range=range_,
        self_facts=report.self_facts,
        dependency=report.dependency,
        services=report.services,
    )
