from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status


class ServiceError(HTTPException):
    """Domain failure raised by services and rendered by the routers' error envelope."""

    kind = "internal_error"
    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(status_code=self.status_code_default, detail=message)
        self.message = message
        self.details = details


class ValidationFailed(ServiceError):
    kind = "validation_error"
    status_code_default = 422

    def __init__(self, message: str, errors: list[dict[str, str]] | None = None) -> None:
        super().__init__(message, details=errors or [])
        self.errors = errors or []

    @classmethod
    def for_field(cls, field: str, message: str) -> ValidationFailed:
        return cls(message, errors=[{"field": field, "message": message}])


class NotFound(ServiceError):
    kind = "not_found"
    status_code_default = status.HTTP_404_NOT_FOUND


class Unauthorized(ServiceError):
    kind = "unauthorized"
    status_code_default = status.HTTP_401_UNAUTHORIZED


class Forbidden(ServiceError):
    kind = "forbidden"
    status_code_default = status.HTTP_403_FORBIDDEN


class Conflict(ServiceError):
    kind = "conflict"
    status_code_default = status.HTTP_409_CONFLICT


class Internal(ServiceError):
    pass


_KIND_BY_STATUS = {
    status.HTTP_400_BAD_REQUEST: "validation_error",
    status.HTTP_401_UNAUTHORIZED: "unauthorized",
    status.HTTP_403_FORBIDDEN: "forbidden",
    status.HTTP_404_NOT_FOUND: "not_found",
    status.HTTP_409_CONFLICT: "conflict",
    422: "validation_error",
    status.HTTP_429_TOO_MANY_REQUESTS: "rate_limited",
}


def error_kind(exc: HTTPException) -> str:
    if isinstance(exc, ServiceError):
        return exc.kind
    return _KIND_BY_STATUS.get(exc.status_code, "internal_error")
