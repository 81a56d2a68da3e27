"""Single timed dependency check.

A probe runs one caller-supplied check under a deadline and turns every
outcome (success, failure, exception, timeout) into a ``CheckResult``.
Probes never raise.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Awaitable, Callable, Union

import structlog
from pydantic import BaseModel, ConfigDict


TIMEOUT_ERROR = "timeout"


class CheckOutcome(BaseModel):
    """Rich return value of a check (e.g. an HTTP probe that got a 503)."""

    model_config = ConfigDict(frozen=True)

    ok: bool
    status: int | None = None
    error: str | None = None
    url: str | None = None
    path: str | None = None
    body: Any = None


class CheckResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    ok: bool
    status: int | None = None
    latency_ms: float | None = None
    error: str | None = None
    url: str | None = None
    path: str | None = None
    body: Any = None

    @classmethod
    def timed_out(cls, name: str) -> "CheckResult":
        return cls(name=name, ok=False, status=None, latency_ms=None, error=TIMEOUT_ERROR)


@dataclass(frozen=True)
class ProbeContext:
    """Deadline handed to a check so it can bound its own I/O."""

    name: str
    deadline: float

    def remaining(self) -> float:
        """Seconds left before the probe gives up (never negative)."""
        return max(self.deadline - perf_counter(), 0.0)


CheckReturn = Union[CheckOutcome, int, None]
Check = Callable[[ProbeContext], Union[Awaitable[CheckReturn], CheckReturn]]


@dataclass(frozen=True)
class ServiceCheckConfig:
    name: str
    check: Check
    timeout_ms: int
    required_for_readiness: bool = False


def describe_error(exc: BaseException) -> str:
    message = str(exc).strip()
    return message or type(exc).__name__


async def _invoke(check: Check, ctx: ProbeContext) -> CheckReturn:
    if inspect.iscoroutinefunction(check):
        result = check(ctx)
    else:
        # Plain callables may block; run them in a worker thread so the deadline still fires.
        result = await asyncio.to_thread(check, ctx)
    if inspect.isawaitable(result):
        result = await result
    return result


def _discard_result(task: asyncio.Task[Any]) -> None:
    # Retrieve the late outcome so asyncio does not warn about it.
    if not task.cancelled():
        task.exception()


def _to_result(name: str, value: Any, latency_ms: float) -> CheckResult:
    if isinstance(value, CheckOutcome):
        return CheckResult(
            name=name,
            ok=value.ok,
            status=value.status,
            latency_ms=latency_ms,
            error=None if value.ok else (value.error or "check failed"),
            url=value.url,
            path=value.path,
            body=value.body,
        )
    if isinstance(value, bool):
        if value:
            return CheckResult(name=name, ok=True, latency_ms=latency_ms)
        return CheckResult(name=name, ok=False, latency_ms=latency_ms, error="check failed")
    if isinstance(value, int):
        return CheckResult(name=name, ok=True, status=value, latency_ms=latency_ms)
    return CheckResult(name=name, ok=True, latency_ms=latency_ms)


async def run_probe(config: ServiceCheckConfig) -> CheckResult:
    """Run ``config.check`` under ``config.timeout_ms`` and capture the outcome."""

    logger = structlog.get_logger("ops")
    timeout_s = config.timeout_ms / 1000.0
    start = perf_counter()
    ctx = ProbeContext(name=config.name, deadline=start + timeout_s)

    task = asyncio.ensure_future(_invoke(config.check, ctx))
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout_s)
    except asyncio.CancelledError:
        task.cancel()
        task.add_done_callback(_discard_result)
        raise

    if not done:
        # Stop waiting; the check is responsible for its own side effects.
        task.cancel()
        task.add_done_callback(_discard_result)
        logger.warning("probe_timeout", probe=config.name, timeout_ms=config.timeout_ms)
        return CheckResult.timed_out(config.name)

    latency_ms = round((perf_counter() - start) * 1000.0, 2)
    if task.cancelled():
        return CheckResult(name=config.name, ok=False, latency_ms=latency_ms, error="cancelled")

    exc = task.exception()
    if exc is not None:
        logger.warning("probe_failed", probe=config.name, error=describe_error(exc), latency_ms=latency_ms)
        return CheckResult(name=config.name, ok=False, latency_ms=latency_ms, error=describe_error(exc))

    result = _to_result(config.name, task.result(), latency_ms)
    if not result.ok:
        logger.warning("probe_failed", probe=config.name, error=result.error, latency_ms=latency_ms)
    return result
