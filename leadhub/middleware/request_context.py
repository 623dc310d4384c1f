from __future__ import annotations

import re
import uuid
from dataclasses import dataclass

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from leadhub.context import reset_actor_id, reset_correlation_id, set_actor_id, set_correlation_id
from leadhub.core.auth import bearer_token, decode_access_token
from leadhub.metrics import resolve_route_group


CORRELATION_HEADER = "x-correlation-id"
REQUEST_ID_HEADER = "x-request-id"
# Short opaque tokens only; anything else is replaced with a fresh uuid4.
_CORRELATION_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:-]{0,127}$")


@dataclass(frozen=True)
class RequestContext:
    request_id: str
    correlation_id: str
    user_id: str | None
    route_group: str


def resolve_correlation_id(header_value: str | None) -> str:
    if header_value and _CORRELATION_ID_RE.match(header_value):
        return header_value
    return str(uuid.uuid4())


def _token_subject(request: Request) -> str | None:
    token = bearer_token(request)
    subject = decode_access_token(token) if token else None
    return str(subject) if subject is not None else None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind correlation id and caller identity for everything downstream of this request.

    The bearer subject is taken from the token alone; whether the user still exists
    and is active is decided later by ``get_current_actor``.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        context = RequestContext(
            request_id=uuid.uuid4().hex,
            correlation_id=resolve_correlation_id(request.headers.get(CORRELATION_HEADER)),
            user_id=_token_subject(request),
            route_group=resolve_route_group(request.url.path),
        )
        request.state.context = context
        request.state.correlation_id = context.correlation_id

        span = trace.get_current_span()
        if span.is_recording():
            span.set_attribute("correlation_id", context.correlation_id)
            if context.user_id is not None:
                span.set_attribute("enduser.id", context.user_id)

        correlation_token = set_correlation_id(context.correlation_id)
        actor_token = set_actor_id(context.user_id)
        try:
            response = await call_next(request)
        finally:
            reset_actor_id(actor_token)
            reset_correlation_id(correlation_token)

        response.headers[CORRELATION_HEADER] = context.correlation_id
        response.headers[REQUEST_ID_HEADER] = context.request_id
        return response
