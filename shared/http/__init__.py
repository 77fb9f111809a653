"""HTTP helpers and exception definitions used across services."""

from .errors import (
    DuplicatePatientError,
    Envelope,
    EnvelopeException,
    FieldViolation,
    InvalidParameterError,
    MissingParameterError,
    PatientNotFoundError,
    PatientValidationError,
    register_exception_handlers,
    success,
)

__all__ = [
    "DuplicatePatientError",
    "Envelope",
    "EnvelopeException",
    "FieldViolation",
    "InvalidParameterError",
    "MissingParameterError",
    "PatientNotFoundError",
    "PatientValidationError",
    "register_exception_handlers",
    "success",
]
