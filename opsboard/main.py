from __future__ import annotations

from fastapi import FastAPI

from opsboard.api.metrics import router as metrics_router
from opsboard.api.ops import router as ops_router
from opsboard.config import get_settings
from opsboard.db.session import get_engine
from opsboard.observability.logging import configure_logging
from opsboard.observability.metrics import MetricsRegistry, get_metrics
from opsboard.observability.middleware import RequestContextMiddleware
from opsboard.ops.aggregator import OpsStatusAggregator
from opsboard.ops.checks import build_aggregator


def create_app(
    *,
    metrics: MetricsRegistry | None = None,
    aggregator: OpsStatusAggregator | None = None,
) -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    metrics = metrics if metrics is not None else get_metrics()
    aggregator = aggregator if aggregator is not None else build_aggregator(settings, get_engine())

    app = FastAPI(title="Ops Board", version="0.1.0")
    app.state.metrics = metrics
    app.state.aggregator = aggregator
    app.add_middleware(RequestContextMiddleware, metrics=metrics, service=settings.service_name)
    app.include_router(metrics_router)
    app.include_router(ops_router)
    return app


app = create_app()
