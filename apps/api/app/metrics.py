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

division_closure_rows_written_total = Counter(
    "division_closure_rows_written_total",
    "Closure rows inserted or deleted by hierarchy maintenance",
    ["operation"],
)

division_reparent_duration_seconds = Histogram(
    "division_reparent_duration_seconds",
    "Duration of closure rebuilds caused by re-parenting",
)

division_entity_reassignments_total = Counter(
    "division_entity_reassignments_total",
    "Entity reassignments by entity type and outcome",
    ["entity_type", "outcome"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _normalize_route_template(path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _normalize_route_template(route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_closure_rows(operation: str, count: int) -> None:
    if count > 0:
        division_closure_rows_written_total.labels(operation=operation).inc(count)


def observe_reparent(duration: float) -> None:
    division_reparent_duration_seconds.observe(duration)


def observe_reassignment(entity_type: str, success: bool) -> None:
    outcome = "success" if success else "failure"
    division_entity_reassignments_total.labels(entity_type=entity_type, outcome=outcome).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
