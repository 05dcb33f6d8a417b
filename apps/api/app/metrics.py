from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

cross_sell_matrix_queries_total = Counter(
    "cross_sell_matrix_queries_total",
    "Total cross-sell matrix queries by entry point and outcome",
    ["entry_point", "status"],
)

cross_sell_matrix_query_duration_seconds = Histogram(
    "cross_sell_matrix_query_duration_seconds",
    "Cross-sell matrix query duration in seconds",
    ["entry_point"],
)

cross_sell_matrix_items_count = Histogram(
    "cross_sell_matrix_items_count",
    "Number of matrix items returned per query",
    ["entry_point"],
    buckets=(0, 1, 5, 10, 25, 50, 100, 250, 500, 1000, 5000),
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return path_format
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return route_path
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_matrix_query(entry_point: str, status: str, duration: float, item_count: int | None = None) -> None:
    cross_sell_matrix_queries_total.labels(entry_point=entry_point, status=status).inc()
    cross_sell_matrix_query_duration_seconds.labels(entry_point=entry_point).observe(duration)
    if item_count is not None:
        cross_sell_matrix_items_count.labels(entry_point=entry_point).observe(item_count)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
