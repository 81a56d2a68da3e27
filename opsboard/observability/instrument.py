from __future__ import annotations

import asyncio
import functools
import inspect
from time import perf_counter
from typing import Any, Callable, Protocol, TypeVar, runtime_checkable

import structlog
from starlette.requests import Request

from opsboard.observability.metrics import MetricsRegistry
from opsboard.observability.routes import UNKNOWN_LABEL, normalize_route_label


F = TypeVar("F", bound=Callable[..., Any])

DEFAULT_STATUS = 200
FAILURE_STATUS = 500
CLIENT_CLOSED_STATUS = 499


@runtime_checkable
class HasStatusCode(Protocol):
    status_code: int


def _status_of(value: Any, default: int) -> int:
    if isinstance(value, HasStatusCode):
        try:
            return int(value.status_code)
        except (TypeError, ValueError):
            return default
    return default


def _failure_status(exc: BaseException) -> int:
    # Raised exceptions always count as failures; only error-class codes are kept.
    status = _status_of(exc, FAILURE_STATUS)
    return status if status >= 400 else FAILURE_STATUS


def _find_request(args: tuple[Any, ...], kwargs: dict[str, Any]) -> Request | None:
    for value in (*args, *kwargs.values()):
        if isinstance(value, Request):
            return value
    return None


class _Measurement:
    """One in-flight handler invocation; ``finish`` records exactly once."""

    def __init__(self, metrics: MetricsRegistry, service: str, route: str | None, request: Request | None) -> None:
        self.metrics = metrics
        self.service = service
        self.route = route
        self.request = request
        self.status = FAILURE_STATUS
        self.start = perf_counter()

    def finish(self) -> None:
        elapsed_ms = (perf_counter() - self.start) * 1000.0
        try:
            method = "UNKNOWN"
            route = self.route
            if self.request is not None:
                method = self.request.method
                if route is None:
                    route = self.request.url.path
            self.metrics.observe(
                service=self.service,
                method=method,
                route=normalize_route_label(route) if route is not None else UNKNOWN_LABEL,
                status=self.status,
                duration_ms=elapsed_ms,
            )
        except Exception:
            # Runs inside ``finally``; raising here would mask the handler's own outcome.
            structlog.get_logger("metrics").exception("instrumentation_failed", service=self.service)


def instrument_handler(
    handler: F,
    *,
    metrics: MetricsRegistry,
    service: str,
    route: str | None = None,
) -> F:
    """Return an equivalent handler that records one metric sample per call.

    The handler's return value and raised exceptions pass through untouched.
    Sync handlers get a sync wrapper so frameworks keep dispatching them to
    their threadpool.

    ``route`` overrides the request path as the label source. It is normalized
    like any other path, so ``/threads/{thread_id}`` is recorded as
    ``/threads/:id``.

    Raised exceptions record their ``status_code`` when it is 400 or above;
    anything else (including a redirect-style exception) records 500.
    """

    if inspect.iscoroutinefunction(handler):

        @functools.wraps(handler)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            measurement = _Measurement(metrics, service, route, _find_request(args, kwargs))
            try:
                result = await handler(*args, **kwargs)
                measurement.status = _status_of(result, DEFAULT_STATUS)
                return result
            except asyncio.CancelledError:
                measurement.status = CLIENT_CLOSED_STATUS
                raise
            except BaseException as exc:
                measurement.status = _failure_status(exc)
                raise
            finally:
                measurement.finish()

        return async_wrapper  # type: ignore[return-value]

    @functools.wraps(handler)
    def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
        measurement = _Measurement(metrics, service, route, _find_request(args, kwargs))
        try:
            result = handler(*args, **kwargs)
            measurement.status = _status_of(result, DEFAULT_STATUS)
            return result
        except BaseException as exc:
            measurement.status = _failure_status(exc)
            raise
        finally:
            measurement.finish()

    return sync_wrapper  # type: ignore[return-value]


def instrumented(*, metrics: MetricsRegistry, service: str, route: str | None = None) -> Callable[[F], F]:
    """Decorator form of ``instrument_handler``."""

    def decorator(handler: F) -> F:
        return instrument_handler(handler, metrics=metrics, service=service, route=route)

    return decorator
