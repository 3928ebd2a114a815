"""
Error taxonomy for the HTTP handlers and the JSON shape they render to.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """Base class for errors that map to a fixed HTTP status."""

    status_code = 500

    def __init__(self, message: str, *, details: Any = None, **extra: Any):
        super().__init__(message)
        self.message = message
        self.details = details
        self.extra = extra

    def to_payload(self) -> dict:
        payload: dict = {"error": self.message}
        if self.details is not None:
            payload["details"] = self.details
        payload.update(self.extra)
        return payload


class ValidationError(ServiceError):
    status_code = 400


class AuthError(ServiceError):
    status_code = 401


class ForbiddenError(ServiceError):
    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


class RateLimitError(ServiceError):
    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded", *, retry_after: Optional[int] = None, **extra: Any):
        super().__init__(message, **extra)
        self.retry_after = retry_after


class UpstreamError(ServiceError):
    """An external API answered with a non-2xx status or unusable body."""

    status_code = 500

    def __init__(self, message: str, *, status_code: Optional[int] = None, details: Any = None, **extra: Any):
        super().__init__(message, details=details, **extra)
        if status_code is not None:
            self.status_code = status_code


def _service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    headers = None
    if isinstance(exc, RateLimitError) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(exc.to_payload(), status_code=exc.status_code, headers=headers)


def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    missing = [
        ".".join(str(part) for part in err.get("loc", ())[1:])
        for err in exc.errors()
        if err.get("type") == "missing"
    ]
    if missing:
        message = f"Missing required fields: {', '.join(missing)}"
    else:
        message = "Invalid request body"
    return JSONResponse({"error": message, "details": jsonable_encoder(exc.errors())}, status_code=400)


def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error in %s %s", request.method, request.url.path)
    return JSONResponse({"error": str(exc) or exc.__class__.__name__}, status_code=500)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, _service_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
