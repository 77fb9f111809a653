"""Response envelopes and custom exceptions for HTTP responses."""

from __future__ import annotations

from http import HTTPStatus
from typing import Any, Iterable, Sequence, cast

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from shared.observability.logger import get_logger

__all__ = [
    "Envelope",
    "EnvelopeException",
    "DuplicatePatientError",
    "FieldViolation",
    "InvalidParameterError",
    "MissingParameterError",
    "PatientNotFoundError",
    "PatientValidationError",
    "register_exception_handlers",
    "success",
]

logger = get_logger(__name__)


class FieldViolation(BaseModel):
    """A single field-level validation failure."""

    field: str = Field(description="Name of the offending field or parameter")
    message: str = Field(description="Human-readable reason for the failure")

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class Envelope(BaseModel):
    """Uniform wrapper around every API response."""

    success: bool
    message: str | None = None
    data: Any = None
    error: str | None = None
    errors: list[FieldViolation] | None = Field(
        default=None, description="Field-level details for validation failures"
    )


def success(data: Any = None, message: str = "Operation successful") -> Envelope:
    """Return a successful :class:`Envelope` carrying ``data``."""

    return Envelope(success=True, message=message, data=data)


class EnvelopeException(RuntimeError):
    """Base exception rendered as a failed :class:`Envelope`."""

    default_status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "An error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
        violations: Iterable[FieldViolation] | None = None,
    ) -> None:
        resolved = message or self.default_message
        super().__init__(resolved)
        self.message = resolved
        self.status_code = status_code or self.default_status_code
        self.violations = list(violations or [])

    def to_envelope(self) -> Envelope:
        """Return the failed envelope describing this exception."""

        return Envelope(
            success=False,
            error=self.message,
            errors=self.violations or None,
        )


class PatientNotFoundError(EnvelopeException):
    """Raised when no patient matches a code- or name-targeted operation."""

    default_status_code = status.HTTP_404_NOT_FOUND
    default_message = "Patient not found"

    def __init__(self, identifier: str | None = None, *, message: str | None = None) -> None:
        self.identifier = identifier
        super().__init__(message or self.default_message)


class DuplicatePatientError(EnvelopeException):
    """Raised when a unique patient field collides with an existing record."""

    default_status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, field: str, value: Any = None) -> None:
        self.field = field
        self.value = value
        super().__init__(
            f"{field} already exists",
            violations=[FieldViolation(field=field, message="already exists")],
        )


class PatientValidationError(EnvelopeException):
    """Raised when a patient payload violates the entity schema."""

    default_status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Patient validation failed"

    def __init__(self, violations: Sequence[FieldViolation]) -> None:
        details = "; ".join(str(violation) for violation in violations)
        message = (
            f"{self.default_message}: {details}" if details else self.default_message
        )
        super().__init__(message, violations=violations)


class MissingParameterError(EnvelopeException):
    """Raised when a required request parameter is absent or blank."""

    default_status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, parameter: str, *, message: str | None = None) -> None:
        self.parameter = parameter
        super().__init__(
            message or f"'{parameter}' parameter is required",
            violations=[FieldViolation(field=parameter, message="is required")],
        )


class InvalidParameterError(EnvelopeException):
    """Raised when a request parameter holds a value outside its allowed set."""

    default_status_code = status.HTTP_400_BAD_REQUEST

    def __init__(
        self, parameter: str, value: Any, allowed: Iterable[str] | None = None
    ) -> None:
        self.parameter = parameter
        self.value = value
        self.allowed = list(allowed or [])
        reason = f"unsupported value '{value}'"
        if self.allowed:
            reason += f" (expected one of: {', '.join(self.allowed)})"
        super().__init__(
            f"Invalid '{parameter}' parameter: {reason}",
            violations=[FieldViolation(field=parameter, message=reason)],
        )


def _envelope_response(envelope: Envelope, status_code: int) -> JSONResponse:
    payload = envelope.model_dump(mode="json", exclude_none=True)
    return JSONResponse(payload, status_code=status_code)


def _status_phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "HTTP Error"


def _http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    http_exc = cast(StarletteHTTPException, exc)
    if http_exc.status_code == status.HTTP_404_NOT_FOUND and http_exc.detail in (
        None,
        "Not Found",
    ):
        message = "Route not found"
    elif isinstance(http_exc.detail, str) and http_exc.detail:
        message = http_exc.detail
    else:
        message = _status_phrase(http_exc.status_code)
    return _envelope_response(
        Envelope(success=False, error=message), http_exc.status_code
    )


def _location_to_field(location: Sequence[Any]) -> str:
    parts = [str(part) for part in location if part not in ("body", "query", "path")]
    return ".".join(parts) or "request"


def _validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    validation_error = cast(RequestValidationError, exc)
    violations = [
        FieldViolation(
            field=_location_to_field(error.get("loc", ())),
            message=str(error.get("msg", "is invalid")),
        )
        for error in validation_error.errors()
    ]
    fields = ", ".join(violation.field for violation in violations)
    envelope = Envelope(
        success=False,
        error=f"Invalid request parameters: {fields}" if fields else "Invalid request",
        errors=violations or None,
    )
    return _envelope_response(envelope, status.HTTP_400_BAD_REQUEST)


def _envelope_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    envelope_exc = cast(EnvelopeException, exc)
    return _envelope_response(envelope_exc.to_envelope(), envelope_exc.status_code)


def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_exception",
        error=str(exc),
        error_type=exc.__class__.__name__,
        path=str(request.url),
    )
    envelope = Envelope(
        success=False,
        error="An unexpected error occurred while processing the request.",
    )
    return _envelope_response(envelope, status.HTTP_500_INTERNAL_SERVER_ERROR)


def register_exception_handlers(app: FastAPI) -> None:
    """Register handlers that render every failure as a failed envelope."""

    app.add_exception_handler(EnvelopeException, _envelope_exception_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
