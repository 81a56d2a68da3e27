from __future__ import annotations

import asyncio
from typing import Any

import httpx
from sqlalchemy import text
from sqlalchemy.engine import Engine

from opsboard.config import Settings, ServiceTarget
from opsboard.ops.aggregator import OpsStatusAggregator
from opsboard.ops.probe import Check, CheckOutcome, ProbeContext, ServiceCheckConfig, describe_error


DB_CHECK_NAME = "db"
BODY_TEXT_LIMIT = 300


def _select_one(engine: Engine) -> None:
    with engine.connect() as conn:
        conn.execute(text("select 1"))


def database_check(engine: Engine) -> Check:
    """Run a trivial query against the primary datastore."""

    async def check(ctx: ProbeContext) -> None:
        _ = ctx
        # Blocking driver call; on timeout the probe stops waiting and the thread finishes alone.
        await asyncio.to_thread(_select_one, engine)

    return check


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text[:BODY_TEXT_LIMIT] or None


def http_check(url: str, *, path: str | None = None, transport: httpx.AsyncBaseTransport | None = None) -> Check:
    """GET a peer service's liveness endpoint; any 2xx is healthy.

    The outcome carries the URL, the path checked and the peer's body (parsed
    JSON, else text capped at ``BODY_TEXT_LIMIT`` chars) for the dashboard.
    """

    path_checked = path if path is not None else httpx.URL(url).path

    async def check(ctx: ProbeContext) -> CheckOutcome:
        try:
            async with httpx.AsyncClient(transport=transport, timeout=max(ctx.remaining(), 0.001)) as client:
                response = await client.get(url, headers={"cache-control": "no-store"})
        except httpx.HTTPError as exc:
            return CheckOutcome(ok=False, error=describe_error(exc), url=url, path=path_checked)

        body = _response_body(response)
        if response.is_success:
            return CheckOutcome(ok=True, status=response.status_code, url=url, path=path_checked, body=body)
        return CheckOutcome(
            ok=False,
            status=response.status_code,
            error=f"HTTP {response.status_code}",
            url=url,
            path=path_checked,
            body=body,
        )

    return check


def target_url(target: ServiceTarget) -> str:
    return target.url.rstrip("/") + "/" + target.path.lstrip("/")


def build_aggregator(
    settings: Settings,
    engine: Engine,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> OpsStatusAggregator:
    services = [
        ServiceCheckConfig(
            name=target.name,
            check=http_check(target_url(target), path=target.path, transport=transport),
            timeout_ms=target.timeout_ms,
            required_for_readiness=target.required_for_readiness,
        )
        for target in settings.ops_service_targets
    ]
    dependency = ServiceCheckConfig(
        name=DB_CHECK_NAME,
        check=database_check(engine),
        timeout_ms=settings.db_check_timeout_ms,
        required_for_readiness=True,
    )
    return OpsStatusAggregator(
        services,
        dependency,
        service_name=settings.service_name,
        host=settings.host_label,
        build_sha=settings.build_sha,
        overall_timeout_ms=settings.ops_overall_timeout_ms,
    )
