from __future__ import annotations

import logging
import time
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from leadhub.metrics import observe_http_request, resolve_http_path_label, resolve_route_group


logger = logging.getLogger("leadhub.request")


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


def _request_fields(request: Request, status_code: int, duration_ms: float) -> dict[str, Any]:
    context = getattr(request.state, "context", None)
    return {
        "method": request.method,
        # Resolved after routing so path parameters collapse to their template.
        "path": resolve_http_path_label(request),
        "route_group": getattr(context, "route_group", None) or resolve_route_group(request.url.path),
        "actor_id": getattr(context, "user_id", None),
        "request_id": getattr(context, "request_id", None),
        "status_code": status_code,
        "duration_ms": duration_ms,
    }


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One ``http.request`` record per request, levelled by outcome, plus the HTTP metrics."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            fields = _request_fields(request, 500, round((time.perf_counter() - started) * 1000, 2))
            observe_http_request(fields["method"], fields["path"], 500, fields["duration_ms"] / 1000)
            logger.error("http.error", exc_info=True, extra=fields)
            raise

        fields = _request_fields(request, response.status_code, round((time.perf_counter() - started) * 1000, 2))
        observe_http_request(fields["method"], fields["path"], response.status_code, fields["duration_ms"] / 1000)
        logger.log(_level_for(response.status_code), "http.request", extra=fields)
        return response
