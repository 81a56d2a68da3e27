from __future__ import annotations

import asyncio
import os
import platform
import socket
from collections.abc import Sequence
from datetime import datetime, timezone
from time import monotonic

import structlog
from pydantic import BaseModel, ConfigDict, Field

from opsboard.ops.probe import CheckResult, ServiceCheckConfig, run_probe


_PROCESS_STARTED = monotonic()


class ConfigurationError(ValueError):
    """Malformed probe configuration, raised once at construction."""


class SelfFacts(BaseModel):
    model_config = ConfigDict(frozen=True)

    ok: bool = True
    service: str
    uptime_seconds: int
    pid: int
    host: str
    python_version: str
    timestamp: datetime
    build_sha: str | None = None


class DependencyStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    ok: bool
    latency_ms: float | None = None
    error: str | None = None


class OpsStatusReport(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    ok: bool
    self_facts: SelfFacts = Field(alias="self")
    dependency: DependencyStatus
    services: list[CheckResult]


def _validate(configs: Sequence[ServiceCheckConfig]) -> None:
    seen: set[str] = set()
    for config in configs:
        if not isinstance(config.name, str) or not config.name.strip():
            raise ConfigurationError("service check name must be a non-empty string")
        if config.name in seen:
            raise ConfigurationError(f"duplicate service check name: {config.name!r}")
        seen.add(config.name)
        if isinstance(config.timeout_ms, bool) or not isinstance(config.timeout_ms, int) or config.timeout_ms <= 0:
            raise ConfigurationError(f"timeout_ms must be a positive integer for {config.name!r}")
        if not callable(config.check):
            raise ConfigurationError(f"check for {config.name!r} is not callable")


class OpsStatusAggregator:
    """Probes the primary datastore and every configured service concurrently.

    Results are always reported in configuration order. The aggregator keeps
    no state between runs, so overlapping ``run`` calls are independent.
    """

    def __init__(
        self,
        services: Sequence[ServiceCheckConfig],
        dependency: ServiceCheckConfig,
        *,
        service_name: str,
        host: str | None = None,
        build_sha: str | None = None,
        started_at: float | None = None,
        overall_timeout_ms: int | None = None,
    ) -> None:
        _validate(services)
        _validate([dependency])
        if overall_timeout_ms is not None and overall_timeout_ms <= 0:
            raise ConfigurationError("overall_timeout_ms must be positive")

        self.services: tuple[ServiceCheckConfig, ...] = tuple(services)
        self.dependency = dependency
        self.service_name = service_name
        self.host = host or socket.gethostname()
        self.build_sha = build_sha
        self.started_at = _PROCESS_STARTED if started_at is None else started_at
        self.overall_timeout_ms = overall_timeout_ms

    def self_facts(self) -> SelfFacts:
        return SelfFacts(
            ok=True,
            service=self.service_name,
            uptime_seconds=int(monotonic() - self.started_at),
            pid=os.getpid(),
            host=self.host,
            python_version=platform.python_version(),
            timestamp=datetime.now(timezone.utc),
            build_sha=self.build_sha,
        )

    async def check_dependency(self, overall_timeout_ms: int | None = None) -> DependencyStatus:
        """Probe only the primary datastore (readiness)."""

        result = (await self._gather([self.dependency], overall_timeout_ms))[0]
        return DependencyStatus(ok=result.ok, latency_ms=result.latency_ms, error=result.error)

    async def run(self, overall_timeout_ms: int | None = None) -> OpsStatusReport:
        facts = self.self_facts()
        configs = [self.dependency, *self.services]
        results = await self._gather(configs, overall_timeout_ms)
        db_result, service_results = results[0], results[1:]

        dependency = DependencyStatus(ok=db_result.ok, latency_ms=db_result.latency_ms, error=db_result.error)
        required_ok = all(
            result.ok for config, result in zip(self.services, service_results) if config.required_for_readiness
        )
        return OpsStatusReport(
            ok=dependency.ok and required_ok,
            self_facts=facts,
            dependency=dependency,
            services=service_results,
        )

    async def _gather(
        self,
        configs: Sequence[ServiceCheckConfig],
        overall_timeout_ms: int | None,
    ) -> list[CheckResult]:
        timeout_ms = overall_timeout_ms if overall_timeout_ms is not None else self.overall_timeout_ms
        tasks = [asyncio.ensure_future(run_probe(config)) for config in configs]
        try:
            await asyncio.wait(tasks, timeout=None if timeout_ms is None else timeout_ms / 1000.0)
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()

        if pending:
            structlog.get_logger("ops").warning(
                "ops_status_deadline_exceeded",
                overall_timeout_ms=timeout_ms,
                probes=[config.name for config, task in zip(configs, tasks) if task in pending],
            )

        results: list[CheckResult] = []
        for config, task in zip(configs, tasks):
            if task.done() and not task.cancelled():
                results.append(task.result())
            else:
                results.append(CheckResult.timed_out(config.name))
        return results
