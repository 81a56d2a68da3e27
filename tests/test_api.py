from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from conftest import fails_with
from opsboard.main import create_app
from opsboard.observability.metrics import MetricsRegistry
from opsboard.ops.aggregator import OpsStatusAggregator
from opsboard.ops.probe import ServiceCheckConfig


async def test_responses_include_x_request_id(api_client) -> None:
    resp = await api_client.get("/health")
    assert resp.status_code == 200
    assert resp.headers.get("x-request-id")


async def test_health_is_liveness_only(api_client) -> None:
    resp = await api_client.get("/health")

    assert resp.headers["cache-control"] == "no-store"
    payload = resp.json()
    assert payload["ok"] is True
    assert payload["service"] == "api"
    assert payload["uptime_seconds"] >= 0
    assert "timestamp" in payload
    assert "services" not in payload


async def test_ops_status_reports_services_in_order(api_client) -> None:
    resp = await api_client.get("/ops/status", params={"range": "24h"})

    assert resp.status_code == 200
    assert resp.headers["cache-control"] == "no-store"
    payload = resp.json()
    assert payload["range"] == "24h"
    assert payload["ok"] is True
    assert payload["self"]["ok"] is True
    assert payload["self"]["host"] == "test-host"
    assert payload["self"]["build_sha"] == "abc1234"
    assert payload["dependency"]["ok"] is True
    assert [s["name"] for s in payload["services"]] == ["user", "staff"]
    assert payload["services"][0]["ok"] is True
    assert payload["services"][0]["status"] == 200
    assert payload["services"][1] == {
        "name": "staff",
        "ok": False,
        "status": None,
        "latency_ms": payload["services"][1]["latency_ms"],
        "error": "connection refused",
        "url": None,
        "path": None,
        "body": None,
    }


async def _client_for(aggregator: OpsStatusAggregator, metrics: MetricsRegistry | None = None) -> AsyncClient:
    app = create_app(metrics=metrics or MetricsRegistry(), aggregator=aggregator)
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def test_ops_status_answers_200_when_everything_is_down() -> None:
    aggregator = OpsStatusAggregator(
        [ServiceCheckConfig(name="user", check=fails_with(RuntimeError("down")), timeout_ms=100)],
        ServiceCheckConfig(name="db", check=fails_with(OSError("db unreachable")), timeout_ms=100),
        service_name="api",
    )
    async with await _client_for(aggregator) as client:
        resp = await client.get("/ops/status")

    assert resp.status_code == 200
    payload = resp.json()
    assert payload["ok"] is False
    assert payload["range"] is None
    assert payload["dependency"] == {"ok": False, "latency_ms": payload["dependency"]["latency_ms"], "error": "db unreachable"}


async def test_ready_returns_503_when_primary_datastore_is_down() -> None:
    aggregator = OpsStatusAggregator(
        [],
        ServiceCheckConfig(name="db", check=fails_with(OSError("db unreachable")), timeout_ms=100),
        service_name="api",
    )
    async with await _client_for(aggregator) as client:
        resp = await client.get("/ready")

    assert resp.status_code == 503
    assert resp.headers["cache-control"] == "no-store"
    payload = resp.json()
    assert payload["ok"] is False
    assert payload["db"] == "down"
    assert payload["error"] == "db unreachable"


async def test_ready_ignores_peer_services(api_client) -> None:
    resp = await api_client.get("/ready")

    assert resp.status_code == 200
    assert resp.json()["db"] == "ok"


async def test_metrics_endpoint_exposes_prometheus_text(api_client, metrics: MetricsRegistry) -> None:
    await api_client.get("/health")
    await api_client.get("/health")

    resp = await api_client.get("/metrics")

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    assert resp.headers["cache-control"] == "no-store"
    assert "http_requests_total" in resp.text
    assert metrics.request_count("api", "GET", "/health", 200) == 2


async def test_metrics_endpoint_is_not_self_observed(api_client, metrics: MetricsRegistry) -> None:
    await api_client.get("/metrics")
    await api_client.get("/metrics")

    assert metrics.request_count("api", "GET", "/metrics", 200) == 0


async def test_metrics_endpoint_can_be_disabled(monkeypatch, api_client) -> None:
    from opsboard.config import get_settings

    monkeypatch.setenv("ENABLE_METRICS_ENDPOINT", "false")
    get_settings.cache_clear()

    resp = await api_client.get("/metrics")
    assert resp.status_code == 404


async def test_middleware_labels_by_route_template(metrics: MetricsRegistry) -> None:
    app = FastAPI()

    @app.get("/things/{thing_id}")
    async def get_thing(thing_id: int) -> dict[str, int]:
        return {"id": thing_id}

    @app.get("/explode")
    async def explode() -> dict[str, str]:
        raise RuntimeError("kaboom")

    from opsboard.observability.middleware import RequestContextMiddleware

    app.add_middleware(RequestContextMiddleware, metrics=metrics, service="user")
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        await client.get("/things/1")
        await client.get("/things/2")
        await client.get("/things/not-a-number")
        await client.get("/explode")

    assert metrics.request_count("user", "GET", "/things/:id", 200) == 2
    assert metrics.request_count("user", "GET", "/things/:id", 422) == 1
    assert metrics.request_count("user", "GET", "/explode", 500) == 1


async def test_instrumented_route_handler_inside_fastapi(metrics: MetricsRegistry) -> None:
    from fastapi import HTTPException, Request

    from opsboard.observability.instrument import instrumented

    app = FastAPI()

    @app.get("/api/ops/errors")
    @instrumented(metrics=metrics, service="console", route="/api/ops/errors")
    async def errors(request: Request, limit: int = 10) -> dict[str, int]:
        if limit > 100:
            raise HTTPException(status_code=400, detail="limit too large")
        return {"limit": limit}

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        ok = await client.get("/api/ops/errors", params={"limit": 5})
        bad = await client.get("/api/ops/errors", params={"limit": 500})

    assert ok.json() == {"limit": 5}
    assert bad.status_code == 400
    assert metrics.request_count("console", "GET", "/api/ops/errors", 200) == 1
    assert metrics.request_count("console", "GET", "/api/ops/errors", 400) == 1

