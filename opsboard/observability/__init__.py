"""Request observability helpers.

Request IDs + structlog contextvars, route-label normalization, and a
Prometheus-format metrics registry fed by a handler decorator or an ASGI
middleware.
"""

