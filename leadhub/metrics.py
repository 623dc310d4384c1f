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

lead_mutations_total = Counter(
    "lead_mutations_total",
    "Committed lead mutations by action",
    ["action"],
)

activity_mutations_total = Counter(
    "activity_mutations_total",
    "Committed activity mutations by action",
    ["action"],
)

notifications_dispatched_total = Counter(
    "notifications_dispatched_total",
    "Notifications handed to a delivery channel",
    ["channel"],
)

notifications_failed_total = Counter(
    "notifications_failed_total",
    "Notifications whose delivery raised and was discarded",
    ["channel"],
)

access_denied_total = Counter(
    "access_denied_total",
    "Policy denials by resource and action",
    ["resource", "action"],
)


API_PREFIX = "/api/v1"

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
        route_path = getattr(route, "path_format", None) or getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _PATH_PARAM_RE.sub("{id}", route_path)
    return _sanitize_path(request.url.path)


def resolve_route_group(path: str) -> str:
    """First segment under /api/v1 (``leads``, ``auth``...); ``system`` for everything outside it."""

    if not path.startswith(API_PREFIX):
        return "system"
    parts = [part for part in path[len(API_PREFIX):].split("/") if part]
    return parts[0] if parts else "api"


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_lead_mutation(action: str) -> None:
    lead_mutations_total.labels(action=action).inc()


def observe_activity_mutation(action: str) -> None:
    activity_mutations_total.labels(action=action).inc()


def observe_notification_dispatched(channel: str) -> None:
    notifications_dispatched_total.labels(channel=channel).inc()


def observe_notification_failed(channel: str) -> None:
    notifications_failed_total.labels(channel=channel).inc()


def observe_access_denied(resource: str, action: str) -> None:
    access_denied_total.labels(resource=resource, action=action).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
