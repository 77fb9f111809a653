from __future__ import annotations

import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from repositories.patients import InMemoryPatientStore
from services.patient_records.identifiers import (
    FIRST_PATIENT_CODE,
    format_patient_code,
    highest_code_pipeline,
    next_patient_code,
    parse_patient_code,
    successor_code,
)
from services.patient_records.models import PatientDraft


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _draft(code: str) -> PatientDraft:
    number = code[1:]
    return PatientDraft.model_validate(
        {
            "patientCode": code,
            "firstName": "Test",
            "lastName": f"Patient{number}",
            "email": f"patient{number}@example.com",
            "nearestCity": "Colombo",
            "assignedDoctor": "Dr. Sarah Johnson",
            "guardianName": "Guardian",
        }
    )


@pytest.mark.parametrize(
    ("code", "expected"),
    [
        ("P001", 1),
        ("P042", 42),
        ("P1000", 1000),
        (" P007 ", 7),
        ("X001", None),
        ("P", None),
        ("P\u0661\u0662\u0663", None),
        ("P" + "9" * 18, 10**18 - 1),
        ("P" + "9" * 19, None),
    ],
)
def test_parse_patient_code(code: str, expected: int | None) -> None:
    assert parse_patient_code(code) == expected


def test_format_pads_to_three_digits_and_widens() -> None:
    assert format_patient_code(6) == "P006"
    assert format_patient_code(999) == "P999"
    assert format_patient_code(1000) == "P1000"


def test_format_rejects_non_positive_numbers() -> None:
    with pytest.raises(ValueError):
        format_patient_code(0)


def test_format_rejects_numbers_wider_than_int64_safe_digits() -> None:
    with pytest.raises(ValueError):
        format_patient_code(10**18)


def test_successor_code() -> None:
    assert successor_code(None) == FIRST_PATIENT_CODE == "P001"
    assert successor_code(5) == "P006"
    assert successor_code(999) == "P1000"


def test_highest_code_pipeline_sorts_numerically() -> None:
    pipeline = highest_code_pipeline()

    assert pipeline[0] == {"$match": {"patientCode": {"$regex": "^P[0-9]{1,18}$"}}}
    assert "$toLong" in pipeline[1]["$project"]["number"]
    assert pipeline[2] == {"$sort": {"number": -1}}
    assert pipeline[3] == {"$limit": 1}


@pytest.mark.anyio("asyncio")
async def test_first_code_for_empty_store() -> None:
    assert await next_patient_code(InMemoryPatientStore()) == "P001"


@pytest.mark.anyio("asyncio")
async def test_next_code_follows_existing_maximum() -> None:
    store = InMemoryPatientStore([_draft(f"P00{n}") for n in range(1, 6)])

    assert await next_patient_code(store) == "P006"


@pytest.mark.anyio("asyncio")
async def test_next_code_compares_numbers_not_text() -> None:
    store = InMemoryPatientStore([_draft("P999"), _draft("P1000")])

    assert await next_patient_code(store) == "P1001"


@pytest.mark.anyio("asyncio")
async def test_allocated_codes_strictly_increase() -> None:
    store = InMemoryPatientStore([_draft("P003")])
    allocated = []

    for _ in range(3):
        code = await next_patient_code(store)
        await store.insert(_draft(code))
        allocated.append(code)

    assert allocated == ["P004", "P005", "P006"]


@pytest.mark.anyio("asyncio")
async def test_allocation_skips_gaps_left_by_deletion() -> None:
    store = InMemoryPatientStore([_draft("P001"), _draft("P002"), _draft("P003")])
    await store.delete_by_code("P002")

    assert await next_patient_code(store) == "P004"
