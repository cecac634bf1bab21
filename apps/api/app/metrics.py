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

gateway_operations_total = Counter(
    "gateway_operations_total",
    "Data gateway operations by table, action and outcome",
    ["table", "action", "outcome"],
)

gateway_operation_duration_seconds = Histogram(
    "gateway_operation_duration_seconds",
    "Data gateway operation duration in seconds",
    ["table", "action"],
)

policy_denied_writes_count = Counter(
    "policy_denied_writes_count",
    "Writes refused by the row ownership policy",
    ["resource", "action"],
)

dashboard_fetch_failures_total = Counter(
    "dashboard_fetch_failures_total",
    "Dashboard aggregate fetches that failed",
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        for attribute in ("path_format", "path"):
            template = getattr(route, attribute, None)
            if isinstance(template, str) and template:
                return _PATH_PARAM_RE.sub("{id}", template)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_gateway_operation(table: str, action: str, outcome: str, duration: float) -> None:
    gateway_operations_total.labels(table=table, action=action, outcome=outcome).inc()
    gateway_operation_duration_seconds.labels(table=table, action=action).observe(duration)


def observe_policy_denied_write(resource: str, action: str) -> None:
    policy_denied_writes_count.labels(resource=resource, action=action).inc()


def observe_dashboard_failure() -> None:
    dashboard_fetch_failures_total.inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
