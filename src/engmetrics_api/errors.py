"""Service errors and their HTTP rendering."""

from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class ServiceError(Exception):
    """Base service exception (-> HTTP 500)."""


class ConfigurationError(ServiceError):
    """Provider credentials missing on the server (-> HTTP 500)."""


class ValidationError(ServiceError):
    """Missing or malformed input, OAuth state mismatch (-> HTTP 400)."""


class DataError(ServiceError):
    """Upstream returned nothing to analyse (-> HTTP 404)."""


class BusyError(ServiceError):
    """An analysis run is already in flight (-> HTTP 409)."""


class UpstreamError(ServiceError):
    """Non-success response from GitHub.

    ``status_code`` is the status this service answers with, ``upstream_status``
    the one GitHub returned.
    """

    def __init__(self, message: str, status_code: int = 502, upstream_status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.upstream_status = upstream_status


_STATUS_MAP: dict[type[ServiceError], int] = {
    ConfigurationError: 500,
    ValidationError: 400,
    DataError: 404,
    BusyError: 409,
}


def status_for(exc: ServiceError) -> int:
    if isinstance(exc, UpstreamError):
        return exc.status_code
    for cls in type(exc).__mro__:
        if cls in _STATUS_MAP:
            return _STATUS_MAP[cls]
    return 500


async def _service_error_handler(_request: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(status_code=status_for(exc), content={"error": str(exc)})


async def _validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"])
        messages.append(f"{loc}: {err['msg']}")
    return JSONResponse(status_code=400, content={"error": "; ".join(messages)})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, _service_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
