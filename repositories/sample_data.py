"""Sample patient fixtures used by demo mode and the database seeder."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, Mapping

from services.patient_records.models import PatientDraft, validate_patient

_FIXTURE_DIRECTORY = Path(__file__).parent / "fixtures" / "patients"


class FixtureLoadError(RuntimeError):
    """Raised when sample patient fixtures cannot be loaded from disk."""

    def __init__(self, errors: list[str], drafts: list[PatientDraft] | None = None) -> None:
        message = "Failed to load patient fixtures:\n" + "\n".join(errors)
        super().__init__(message)
        self.errors = errors
        self.drafts: list[PatientDraft] = drafts or []


def _entries(path: Path, payload: Any) -> Iterable[tuple[str, Any]]:
    if isinstance(payload, Mapping):
        yield str(path), payload
        return
    if isinstance(payload, list):
        for index, entry in enumerate(payload):
            yield f"{path}[{index}]", entry
        return
    raise TypeError(f"{path}: top-level JSON payload must be an object or a list")


def load_patient_fixtures(paths: Iterable[Path]) -> list[PatientDraft]:
    """Load and validate patient drafts from the given JSON files.

    Every file may hold a single patient object or a list of them. All
    problems are collected before raising so a broken fixture set is
    reported in one go.
    """

    drafts: list[PatientDraft] = []
    errors: list[str] = []
    seen_codes: set[str] = set()

    for path in paths:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            errors.append(f"{path}: {exc.strerror or 'file not found'}")
            continue
        except json.JSONDecodeError as exc:
            errors.append(f"{path}: invalid JSON ({exc.msg})")
            continue

        try:
            entries = list(_entries(path, payload))
        except TypeError as exc:
            errors.append(str(exc))
            continue

        for label, entry in entries:
            violations = validate_patient(entry)
            if violations:
                details = "; ".join(str(violation) for violation in violations)
                errors.append(f"{label}: {details}")
                continue
            draft = PatientDraft.model_validate(entry)
            if draft.patient_code is None:
                errors.append(f"{label}: sample patients must carry a patientCode")
                continue
            if draft.patient_code in seen_codes:
                errors.append(f"{label}: duplicate patientCode {draft.patient_code}")
                continue
            seen_codes.add(draft.patient_code)
            drafts.append(draft)

    if errors:
        raise FixtureLoadError(errors, drafts)

    return drafts


def discover_fixture_paths(directory: Path | None = None) -> list[Path]:
    """Return the JSON fixture files in ``directory`` in a stable order."""

    directory = directory or _FIXTURE_DIRECTORY
    if not directory.exists():
        return []
    return sorted(path for path in directory.glob("*.json") if path.is_file())


def load_sample_patients(directory: Path | None = None) -> list[PatientDraft]:
    """Return the bundled sample patients."""

    return load_patient_fixtures(discover_fixture_paths(directory))


__all__ = [
    "FixtureLoadError",
    "discover_fixture_paths",
    "load_patient_fixtures",
    "load_sample_patients",
]
