from contextlib import asynccontextmanager
import logging
import traceback
from typing import Any

import socketio
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from leadhub.api.routes import router as api_router
from leadhub.core.config import get_settings
from leadhub.core.database import init_db
from leadhub.core.errors import error_kind
from leadhub.core.events import InternalEvent, event_bus
from leadhub.crm.api import error_response
from leadhub.logging import configure_logging
from leadhub.middleware.rate_limit import MutationRateLimitMiddleware
from leadhub.middleware.request_context import RequestContextMiddleware
from leadhub.middleware.request_logging import RequestLoggingMiddleware
from leadhub.notifications import build_mailer, register_subscribers, set_mailer
from leadhub.notifications.realtime import sio
from leadhub.otel import configure_tracing, instrument_app


configure_logging()
logger = logging.getLogger("leadhub.lifecycle")


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name})


@asynccontextmanager
async def lifespan(app: FastAPI):
    if get_settings().db_create_all:
        init_db()
    event_bus.subscribe("system.started", _on_system_started)
    register_subscribers(event_bus)
    event_bus.publish("system.started", {"service": "api"})
    yield


settings = get_settings()

app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
# Outermost last: context binds ids before the request is logged or rate limited.
app.add_middleware(MutationRateLimitMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["x-correlation-id", "x-request-id"],
)
app.include_router(api_router)


def _field_errors(errors: list[dict[str, Any]]) -> list[dict[str, str]]:
    details: list[dict[str, str]] = []
    for item in errors:
        location = [str(part) for part in item.get("loc", ()) if part not in {"body", "query", "path"}]
        details.append({"field": ".".join(location), "message": str(item.get("msg", "invalid value"))})
    return details


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=422,
        code="request_validation_failed",
        kind="validation_error",
        message="Validation failed",
        details=_field_errors(list(exc.errors())),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code="http_error",
        kind=error_kind(exc),  # type: ignore[arg-type]
        message=str(exc.detail),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_exception", exc_info=exc, extra={"error": str(exc)[:500]})
    details = None if get_settings().is_production else traceback.format_exception(exc)
    return error_response(
        request,
        status_code=500,
        code="internal_error",
        kind="internal_error",
        message="Internal server error",
        details=details,
    )


set_mailer(build_mailer(settings))

configure_tracing(settings)
instrument_app(app)

asgi_app = socketio.ASGIApp(sio, other_asgi_app=app, socketio_path="socket.io")
