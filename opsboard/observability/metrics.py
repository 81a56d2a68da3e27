from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import structlog
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    GCCollector,
    Histogram,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)

from opsboard.config import DEFAULT_BUCKETS_MS, get_settings
from opsboard.observability.routes import normalize_route_label


LABEL_NAMES = ("service", "method", "route", "status")


@dataclass(frozen=True)
class MetricSample:
    service: str
    method: str
    route: str
    status: int
    duration_ms: float

    def label_values(self) -> tuple[str, str, str, str]:
        return (
            str(self.service or "unknown").upper(),
            str(self.method or "UNKNOWN").upper(),
            normalize_route_label(self.route or "unknown"),
            str(int(self.status or 0)),
        )


class MetricsRegistry:
    """Process-local HTTP request metrics (resets on restart).

    Each instance owns a private ``CollectorRegistry`` so tests and
    co-hosted apps never share counters. Recording is append-only.
    """

    def __init__(self, buckets_ms: Sequence[float] | None = None, *, collect_default: bool = False) -> None:
        self.registry = CollectorRegistry(auto_describe=True)
        self.buckets_ms = tuple(sorted(float(b) for b in (buckets_ms or DEFAULT_BUCKETS_MS)))
        self.http_requests_total = Counter(
            "http_requests_total",
            "HTTP requests total",
            labelnames=LABEL_NAMES,
            registry=self.registry,
        )
        self.http_request_duration_ms = Histogram(
            "http_request_duration_ms",
            "HTTP request duration in ms",
            labelnames=LABEL_NAMES,
            buckets=self.buckets_ms,
            registry=self.registry,
        )
        if collect_default:
            ProcessCollector(registry=self.registry)
            PlatformCollector(registry=self.registry)
            GCCollector(registry=self.registry)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    def record_request(self, sample: MetricSample) -> None:
        """Count the request, then add its duration to the histogram.

        The two updates are not atomic: a snapshot taken concurrently may show
        ``http_requests_total`` one ahead of ``http_request_duration_ms_count``
        for the same labels. Both settle once the call returns.
        """
        try:
            labels = sample.label_values()
            duration_ms = max(float(sample.duration_ms), 0.0)
            self.http_requests_total.labels(*labels).inc()
            self.http_request_duration_ms.labels(*labels).observe(duration_ms)
        except Exception:
            # Observability must never fail the observed request.
            structlog.get_logger("metrics").exception("metrics_record_failed", sample=repr(sample))

    def observe(self, *, service: str, method: str, route: str, status: int, duration_ms: float) -> None:
        self.record_request(
            MetricSample(service=service, method=method, route=route, status=status, duration_ms=duration_ms)
        )

    def request_count(self, service: str, method: str, route: str, status: int) -> float:
        """Current counter value for a key (0 when never recorded)."""

        labels = MetricSample(service, method, route, status, 0.0).label_values()
        value = self.registry.get_sample_value("http_requests_total", dict(zip(LABEL_NAMES, labels)))
        return value or 0.0

    def latency_count(self, service: str, method: str, route: str, status: int) -> float:
        labels = MetricSample(service, method, route, status, 0.0).label_values()
        value = self.registry.get_sample_value("http_request_duration_ms_count", dict(zip(LABEL_NAMES, labels)))
        return value or 0.0

    def snapshot(self) -> str:
        return generate_latest(self.registry).decode("utf-8")


_METRICS: MetricsRegistry | None = None


def get_metrics() -> MetricsRegistry:
    global _METRICS
    if _METRICS is None:
        settings = get_settings()
        _METRICS = MetricsRegistry(settings.metrics_buckets_ms, collect_default=settings.metrics_collect_default)
    return _METRICS


def set_metrics(metrics: MetricsRegistry | None) -> None:
    global _METRICS
    _METRICS = metrics
