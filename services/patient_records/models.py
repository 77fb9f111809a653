"""Patient entity schema and the explicit validation entry points."""

from __future__ import annotations

import re
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    computed_field,
    field_validator,
)

from shared.http.errors import FieldViolation, PatientValidationError

from .identifiers import MAX_CODE_DIGITS

# Separators are mandatory between word runs so matching stays linear.
EMAIL_PATTERN = re.compile(r"^\w+(?:[.-]\w+)*@\w+(?:[.-]\w+)*\.\w{2,3}$")
PATIENT_CODE_FORMAT = re.compile(rf"^P[0-9]{{3,{MAX_CODE_DIGITS}}}$")

_TEXT_FIELDS = (
    "patient_code",
    "first_name",
    "last_name",
    "email",
    "nearest_city",
    "assigned_doctor",
    "guardian_name",
)
_REQUIRED_TEXT_FIELDS = _TEXT_FIELDS[1:]
_LIST_FIELDS = ("medical_conditions", "medications", "allergies")

# Keys present on stored records that callers may never write.
SYSTEM_FIELDS = frozenset({"id", "_id", "createdAt", "updatedAt", "fullName"})


def utcnow() -> datetime:
    """Return a naive UTC timestamp, matching what the Mongo driver hands back."""

    return datetime.now(UTC).replace(tzinfo=None)


def to_camel(value: str) -> str:
    """Convert ``snake_case`` ``value`` into ``camelCase`` for JSON aliases."""

    first, *rest = value.split("_")
    return first + "".join(token.capitalize() for token in rest)


class CamelModel(BaseModel):
    """Base model applying camelCase aliases and ignoring unknown fields."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        use_enum_values=True,
    )


class PatientStatus(str, Enum):
    """Closed set of clinical states a patient record may hold."""

    ALIVE = "Alive"
    DECEASED = "Deceased"
    CRITICAL = "Critical"
    STABLE = "Stable"
    RECOVERING = "Recovering"

    def __str__(self) -> str:  # pragma: no cover - trivial wrapper
        return self.value


def _normalize_visit_date(value: Any) -> Any:
    if isinstance(value, str):
        text = value.strip()
        if len(text) == 10:
            try:
                value = date.fromisoformat(text)
            except ValueError:
                return text
        else:
            return text
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day)
    return value


class _PatientFieldRules(CamelModel):
    """Normalisation and constraint rules shared by drafts and updates."""

    @field_validator(*_TEXT_FIELDS, mode="before", check_fields=False)
    @classmethod
    def _strip_text(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator(*_REQUIRED_TEXT_FIELDS, mode="after", check_fields=False)
    @classmethod
    def _require_text(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("email", mode="after", check_fields=False)
    @classmethod
    def _normalize_email(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return value
        lowered = value.lower()
        if not EMAIL_PATTERN.match(lowered):
            raise ValueError("Please enter a valid email")
        return lowered

    @field_validator("patient_code", mode="after", check_fields=False)
    @classmethod
    def _check_patient_code(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        if not PATIENT_CODE_FORMAT.match(value):
            raise ValueError(f"must be 'P' followed by 3 to {MAX_CODE_DIGITS} digits")
        return value

    @field_validator(*_LIST_FIELDS, mode="before", check_fields=False)
    @classmethod
    def _split_list(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple)):
            return [
                item.strip() if isinstance(item, str) else item
                for item in value
                if not (isinstance(item, str) and not item.strip())
            ]
        return value

    @field_validator("last_visit_date", mode="before", check_fields=False)
    @classmethod
    def _parse_visit_date(cls, value: Any) -> Any:
        return _normalize_visit_date(value)

    @field_validator("last_visit_date", mode="after", check_fields=False)
    @classmethod
    def _reject_future_visit(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return value
        if value.tzinfo is not None:
            value = value.astimezone(UTC).replace(tzinfo=None)
        if value > utcnow():
            raise ValueError("cannot be in the future")
        return value


class PatientDraft(_PatientFieldRules):
    """Writable patient fields as accepted on creation and full updates."""

    patient_code: Optional[str] = Field(
        default=None, description="Human-facing identifier; allocated when absent"
    )
    first_name: str = Field(description="Patient given name")
    last_name: str = Field(description="Patient family name")
    email: str = Field(description="Unique contact address, stored lowercase")
    nearest_city: str = Field(description="City closest to the patient")
    assigned_doctor: str = Field(description="Doctor responsible for the patient")
    guardian_name: str = Field(description="Guardian or emergency contact")
    medical_conditions: list[str] = Field(default_factory=list)
    medications: list[str] = Field(default_factory=list)
    allergies: list[str] = Field(default_factory=list)
    status: PatientStatus = Field(default=PatientStatus.ALIVE.value)
    last_visit_date: datetime = Field(default_factory=utcnow)

    def to_document(self) -> dict[str, Any]:
        """Return the stored representation keyed by camelCase field names."""

        return self.model_dump(by_alias=True, exclude_none=True)


class PatientUpdate(_PatientFieldRules):
    """Partial patient payload; only supplied fields are applied."""

    patient_code: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    nearest_city: Optional[str] = None
    assigned_doctor: Optional[str] = None
    guardian_name: Optional[str] = None
    medical_conditions: Optional[list[str]] = None
    medications: Optional[list[str]] = None
    allergies: Optional[list[str]] = None
    status: Optional[PatientStatus] = None
    last_visit_date: Optional[datetime] = None

    @field_validator("*", mode="before")
    @classmethod
    def _reject_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("must not be null")
        return value

    def changes(self) -> dict[str, Any]:
        """Return only the fields the caller supplied, keyed by alias."""

        return self.model_dump(by_alias=True, exclude_unset=True)


class Patient(CamelModel):
    """A stored patient record as returned to callers."""

    id: str = Field(description="Opaque storage identifier")
    patient_code: str
    first_name: str
    last_name: str
    email: str
    nearest_city: str
    assigned_doctor: str
    guardian_name: str
    medical_conditions: list[str] = Field(default_factory=list)
    medications: list[str] = Field(default_factory=list)
    allergies: list[str] = Field(default_factory=list)
    status: str = PatientStatus.ALIVE.value
    last_visit_date: datetime
    created_at: datetime
    updated_at: datetime

    @computed_field(alias="fullName")  # type: ignore[prop-decorator]
    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "Patient":
        """Build a :class:`Patient` from a stored document."""

        payload = dict(document)
        if "_id" in payload:
            payload["id"] = str(payload.pop("_id"))
        payload.pop("fullName", None)
        return cls.model_validate(payload)

    def to_response(self) -> dict[str, Any]:
        """Return the JSON-ready representation used in response envelopes."""

        return self.model_dump(mode="json", by_alias=True)


def _violations_from(error: ValidationError) -> list[FieldViolation]:
    violations: list[FieldViolation] = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "patient"
        if item.get("type") == "missing":
            message = "is required"
        elif item.get("type") == "value_error" and "error" in item.get("ctx", {}):
            message = str(item["ctx"]["error"])
        else:
            message = item.get("msg", "is invalid")
        violations.append(FieldViolation(field=location, message=message))
    return violations


def validate_patient(payload: Any) -> list[FieldViolation]:
    """Return every field-level violation of ``payload`` as a full patient."""

    try:
        PatientDraft.model_validate(payload)
    except ValidationError as exc:
        return _violations_from(exc)
    return []


def validate_patient_update(payload: Any) -> list[FieldViolation]:
    """Return every field-level violation of ``payload`` as a partial update."""

    try:
        PatientUpdate.model_validate(payload)
    except ValidationError as exc:
        return _violations_from(exc)
    return []


def parse_patient_draft(payload: Any) -> PatientDraft:
    """Validate ``payload`` and return the draft, or raise with all violations."""

    try:
        return PatientDraft.model_validate(payload)
    except ValidationError as exc:
        raise PatientValidationError(_violations_from(exc)) from exc


def parse_patient_update(payload: Any) -> PatientUpdate:
    """Validate a partial ``payload`` and return it, or raise with all violations."""

    try:
        return PatientUpdate.model_validate(payload)
    except ValidationError as exc:
        raise PatientValidationError(_violations_from(exc)) from exc


def writable_fields(document: Mapping[str, Any]) -> dict[str, Any]:
    """Strip system-managed keys from a stored ``document``."""

    return {key: value for key, value in document.items() if key not in SYSTEM_FIELDS}


__all__ = [
    "CamelModel",
    "EMAIL_PATTERN",
    "PATIENT_CODE_FORMAT",
    "Patient",
    "PatientDraft",
    "PatientStatus",
    "PatientUpdate",
    "SYSTEM_FIELDS",
    "parse_patient_draft",
    "parse_patient_update",
    "utcnow",
    "validate_patient",
    "validate_patient_update",
    "writable_fields",
]
