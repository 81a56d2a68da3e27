from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient

from opsboard.config import get_settings
from opsboard.db.session import get_engine
from opsboard.main import create_app
from opsboard.observability.metrics import MetricsRegistry, set_metrics
from opsboard.ops.aggregator import OpsStatusAggregator
from opsboard.ops.probe import ProbeContext, ServiceCheckConfig


def ok_after(delay_s: float, status: int | None = None):
    async def check(ctx: ProbeContext) -> int | None:
        _ = ctx
        await asyncio.sleep(delay_s)
        return status

    return check


def never_settles():
    async def check(ctx: ProbeContext) -> None:
        _ = ctx
        await asyncio.Event().wait()

    return check


def fails_with(exc: BaseException, delay_s: float = 0.0):
    async def check(ctx: ProbeContext) -> None:
        _ = ctx
        if delay_s:
            await asyncio.sleep(delay_s)
        raise exc

    return check


def healthy_db() -> ServiceCheckConfig:
    return ServiceCheckConfig(name="db", check=ok_after(0), timeout_ms=500)


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("SERVICE_NAME", "api")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'ops.db'}")
    monkeypatch.setenv("OPS_SERVICE_TARGETS", "[]")
    monkeypatch.setenv("METRICS_COLLECT_DEFAULT", "false")
    monkeypatch.setenv("BUILD_SHA", "abc1234")
    monkeypatch.setenv("HOST_LABEL", "test-host")
    get_settings.cache_clear()
    get_engine.cache_clear()

    yield

    set_metrics(None)
    get_engine.cache_clear()
    get_settings.cache_clear()


@pytest.fixture
def metrics() -> MetricsRegistry:
    return MetricsRegistry()


@pytest.fixture
def aggregator() -> OpsStatusAggregator:
    return OpsStatusAggregator(
        [
            ServiceCheckConfig(name="user", check=ok_after(0.01, 200), timeout_ms=200),
            ServiceCheckConfig(name="staff", check=fails_with(RuntimeError("connection refused")), timeout_ms=200),
        ],
        healthy_db(),
        service_name="api",
        host="test-host",
        build_sha="abc1234",
    )


@pytest.fixture
async def api_client(metrics: MetricsRegistry, aggregator: OpsStatusAggregator) -> AsyncIterator[AsyncClient]:
    app = create_app(metrics=metrics, aggregator=aggregator)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
