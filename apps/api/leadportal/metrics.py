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

jobtread_requests_total = Counter(
    "jobtread_requests_total",
    "Total JobTread RPC calls by outcome",
    ["outcome"],
)

jobtread_request_duration_seconds = Histogram(
    "jobtread_request_duration_seconds",
    "JobTread RPC call duration in seconds",
)

lead_import_steps_total = Counter(
    "lead_import_steps_total",
    "Lead import workflow step outcomes",
    ["step", "outcome"],
)

auth_failures_total = Counter(
    "auth_failures_total",
    "Authentication failures by reason",
    ["reason"],
)


_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    return _INT_RE.sub("/{id}", path)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _PATH_PARAM_RE.sub("{id}", path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _PATH_PARAM_RE.sub("{id}", route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_jobtread_request(outcome: str, duration: float) -> None:
    jobtread_requests_total.labels(outcome=outcome).inc()
    jobtread_request_duration_seconds.observe(duration)


def observe_import_step(step: str, outcome: str) -> None:
    lead_import_steps_total.labels(step=step, outcome=outcome).inc()


def observe_auth_failure(reason: str) -> None:
    auth_failures_total.labels(reason=reason).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
