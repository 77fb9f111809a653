from __future__ import annotations

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from shared.http.errors import (
    DuplicatePatientError,
    Envelope,
    FieldViolation,
    InvalidParameterError,
    MissingParameterError,
    PatientNotFoundError,
    PatientValidationError,
    success,
)


def test_success_envelope() -> None:
    envelope = success({"total": 1}, "Done")

    assert envelope.model_dump(exclude_none=True) == {
        "success": True,
        "message": "Done",
        "data": {"total": 1},
    }


def test_not_found_defaults() -> None:
    error = PatientNotFoundError("P404")

    assert error.status_code == 404
    assert error.identifier == "P404"
    assert error.to_envelope() == Envelope(success=False, error="Patient not found")


def test_duplicate_names_field() -> None:
    error = DuplicatePatientError("email", "a@b.com")

    assert error.status_code == 400
    assert error.message == "email already exists"
    assert error.to_envelope().errors == [FieldViolation(field="email", message="already exists")]


def test_validation_error_lists_every_violation() -> None:
    error = PatientValidationError(
        [
            FieldViolation(field="email", message="Please enter a valid email"),
            FieldViolation(field="status", message="is invalid"),
        ]
    )

    assert error.status_code == 400
    assert error.message == (
        "Patient validation failed: email: Please enter a valid email; status: is invalid"
    )
    assert len(error.to_envelope().errors) == 2


def test_parameter_errors() -> None:
    missing = MissingParameterError("query")
    invalid = InvalidParameterError("order", "up", ["asc", "desc"])

    assert missing.message == "'query' parameter is required"
    assert invalid.message == (
        "Invalid 'order' parameter: unsupported value 'up' (expected one of: asc, desc)"
    )
    assert missing.status_code == invalid.status_code == 400
