"""
Error taxonomy for content analysis and review.
Every error carries an HTTP status and a stable error code so the API layer
can render it without knowing where it was raised.
"""

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


class AnalysisError(Exception):
    """Base class for all service errors."""

    status_code: int = 500
    error_code: str = "ERR_INTERNAL"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": {"code": self.error_code, "message": self.message}}
        if self.details is not None:
            payload["error"]["details"] = self.details
        return payload


class ValidationError(AnalysisError):
    status_code = 400
    error_code = "ERR_VALIDATION"


class NotFoundError(AnalysisError):
    status_code = 404
    error_code = "ERR_NOT_FOUND"


class AlreadyResolvedError(AnalysisError):
    status_code = 409
    error_code = "ERR_ALREADY_RESOLVED"


class NotResolvedError(AnalysisError):
    status_code = 409
    error_code = "ERR_NOT_RESOLVED"


class InvalidStateError(AnalysisError):
    """The item or job is not in a state that allows the operation."""
    status_code = 409
    error_code = "ERR_INVALID_STATE"


class JobBusyError(AnalysisError):
    """An enrichment run holds the job; re-analysis must wait or cancel it."""
    status_code = 409
    error_code = "ERR_JOB_BUSY"


class UnsupportedResolutionError(AnalysisError):
    status_code = 422
    error_code = "ERR_UNSUPPORTED_RESOLUTION"


class ProviderError(AnalysisError):
    """
    Raised when the external LLM fails: quota, rate limit, timeout, network,
    or an unreadable response. Callers treat every variant the same way;
    the distinguishing detail lives only in the message.
    """
    status_code = 502
    error_code = "ERR_PROVIDER"

    def __init__(self, provider_name: str, message: str):
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] {message}")
        self.public_message = message


class InternalError(AnalysisError):
    """Persistence or detector failure."""
    status_code = 500
    error_code = "ERR_INTERNAL"


async def analysis_error_handler(_: Request, exc: AnalysisError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def request_validation_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    error = ValidationError("Invalid request", details={"errors": jsonable_encoder(exc.errors())})
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


def register_exception_handlers(app: FastAPI) -> None:
    """Render every AnalysisError subclass, and malformed requests, as structured JSON errors."""
    app.add_exception_handler(AnalysisError, analysis_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
