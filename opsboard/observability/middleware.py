from __future__ import annotations

import asyncio
import uuid
from collections.abc import Iterable
from time import perf_counter
from typing import Any, Callable

import structlog
from starlette.datastructures import MutableHeaders

from opsboard.observability.instrument import CLIENT_CLOSED_STATUS
from opsboard.observability.metrics import MetricsRegistry
from opsboard.observability.routes import normalize_route_label


DEFAULT_EXCLUDED_PATHS = frozenset({"/metrics", "/api/metrics"})


def _route_label(scope: dict[str, Any]) -> str:
    # Routing stores the matched route on the shared scope; prefer its template.
    route = scope.get("route")
    template = getattr(route, "path", None)
    if isinstance(template, str) and template:
        return normalize_route_label(template)
    return normalize_route_label(scope.get("path"))


class RequestContextMiddleware:
    """Adds request_id context, access logs, and per-route HTTP metrics."""

    def __init__(
        self,
        app: Callable[..., Any],
        *,
        metrics: MetricsRegistry,
        service: str,
        excluded_paths: Iterable[str] | None = None,
    ) -> None:
        self.app = app
        self.metrics = metrics
        self.service = service
        # Avoid self-observing the observability endpoints.
        self._excluded_metric_paths = frozenset(excluded_paths) if excluded_paths is not None else DEFAULT_EXCLUDED_PATHS

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = str(uuid.uuid4())
        path = scope.get("path")
        method = scope.get("method")

        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            path=path,
            method=method,
        )

        start = perf_counter()
        status_code: int = 500

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code

            if message.get("type") == "http.response.start":
                status_code = int(message.get("status", 500))
                headers = MutableHeaders(scope=message)
                headers["X-Request-ID"] = request_id

            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except asyncio.CancelledError:
            status_code = CLIENT_CLOSED_STATUS
            raise
        finally:
            elapsed_ms = (perf_counter() - start) * 1000.0

            # Update metrics first so they update even if logging misbehaves.
            if path not in self._excluded_metric_paths:
                self.metrics.observe(
                    service=self.service,
                    method=str(method or "UNKNOWN"),
                    route=_route_label(scope),
                    status=status_code,
                    duration_ms=elapsed_ms,
                )

            structlog.get_logger("access").info(
                "http_request",
                status_code=status_code,
                elapsed_ms=round(elapsed_ms, 2),
            )

            structlog.contextvars.clear_contextvars()
