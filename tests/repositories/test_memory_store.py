from __future__ import annotations

import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from repositories.patients import InMemoryPatientStore, create_patient_store
from repositories.sample_data import load_sample_patients
from services.patient_records.models import PatientDraft
from services.patient_records.queries import (
    CITY_GROUPING,
    PatientQuery,
    SearchField,
    TextFilter,
    build_listing_query,
    first_name_filter,
)
from shared.config.settings import Settings, StoreBackend
from shared.http.errors import DuplicatePatientError


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2025, 6, 10, 8, 0)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def store() -> InMemoryPatientStore:
    return InMemoryPatientStore(load_sample_patients(), clock=_Clock())


def _draft(**overrides: object) -> PatientDraft:
    payload: dict[str, object] = {
        "patientCode": "P011",
        "firstName": "Ruwan",
        "lastName": "Fernando",
        "email": "ruwan.fernando@email.com",
        "nearestCity": "Kurunegala",
        "assignedDoctor": "Dr. Robert Brown",
        "guardianName": "Nadeesha Fernando",
    }
    payload.update(overrides)
    return PatientDraft.model_validate(payload)


@pytest.mark.anyio("asyncio")
async def test_seeded_store_holds_sample_patients(store: InMemoryPatientStore) -> None:
    assert await store.count() == 10
    patient = await store.find_by_code("P004")
    assert patient is not None
    assert patient.full_name == "Maria Garcia"


@pytest.mark.anyio("asyncio")
async def test_insert_assigns_identity_and_timestamps(store: InMemoryPatientStore) -> None:
    patient = await store.insert(_draft())

    assert len(patient.id) == 32
    assert patient.created_at == patient.updated_at
    assert await store.count() == 11


@pytest.mark.anyio("asyncio")
async def test_insert_requires_allocated_code(store: InMemoryPatientStore) -> None:
    with pytest.raises(ValueError):
        await store.insert(_draft(patientCode=None))


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize(
    ("overrides", "field"),
    [({"patientCode": "P001"}, "patientCode"), ({"email": "lisa.anderson@email.com"}, "email")],
)
async def test_insert_enforces_unique_fields(
    store: InMemoryPatientStore, overrides: dict, field: str
) -> None:
    with pytest.raises(DuplicatePatientError) as excinfo:
        await store.insert(_draft(**overrides))

    assert excinfo.value.field == field
    assert await store.count() == 10


@pytest.mark.anyio("asyncio")
async def test_update_by_code_refreshes_updated_at(store: InMemoryPatientStore) -> None:
    before = await store.find_by_code("P002")

    after = await store.update_by_code("P002", {"status": "Recovering"})

    assert after is not None
    assert after.status == "Recovering"
    assert after.created_at == before.created_at
    assert after.updated_at > before.updated_at


@pytest.mark.anyio("asyncio")
async def test_update_by_code_missing_returns_none(store: InMemoryPatientStore) -> None:
    assert await store.update_by_code("P404", {"status": "Stable"}) is None


@pytest.mark.anyio("asyncio")
async def test_update_by_code_rejects_taken_email(store: InMemoryPatientStore) -> None:
    with pytest.raises(DuplicatePatientError):
        await store.update_by_code("P002", {"email": "harry.silva@gmail.com"})

    assert (await store.find_by_code("P002")).email == "emma.watson@email.com"


@pytest.mark.anyio("asyncio")
async def test_update_matching_counts_only_changed_records(
    store: InMemoryPatientStore,
) -> None:
    outcome = await store.update_matching(first_name_filter("j"), {"status": "Alive"})

    assert outcome.matched == 3
    assert outcome.modified == 1
    assert (await store.find_by_code("P010")).status == "Alive"


@pytest.mark.anyio("asyncio")
async def test_update_matching_leaves_unchanged_records_untouched(
    store: InMemoryPatientStore,
) -> None:
    before = await store.find_by_code("P003")

    await store.update_matching(first_name_filter("john"), {"status": "Alive"})

    assert (await store.find_by_code("P003")).updated_at == before.updated_at


@pytest.mark.anyio("asyncio")
async def test_delete_by_code(store: InMemoryPatientStore) -> None:
    removed = await store.delete_by_code("P007")

    assert removed is not None
    assert removed.patient_code == "P007"
    assert await store.delete_by_code("P007") is None
    assert await store.count() == 9


@pytest.mark.anyio("asyncio")
async def test_page_reports_total_and_pages(store: InMemoryPatientStore) -> None:
    page = await store.page(build_listing_query(page=4, limit=3))

    assert page.total == 10
    assert page.total_pages == 4
    assert [patient.patient_code for patient in page.patients] == ["P001"]


@pytest.mark.anyio("asyncio")
async def test_page_requires_pagination(store: InMemoryPatientStore) -> None:
    with pytest.raises(ValueError):
        await store.page(PatientQuery())


@pytest.mark.anyio("asyncio")
async def test_count_with_filter(store: InMemoryPatientStore) -> None:
    query = PatientQuery(text_filter=TextFilter("colombo", fields=(SearchField.NEAREST_CITY,)))

    assert await store.count(query) == 3


@pytest.mark.anyio("asyncio")
async def test_group_counts_and_stats(store: InMemoryPatientStore) -> None:
    cities = await store.group_counts(CITY_GROUPING)
    stats = await store.stats()

    assert {group.value: group.count for group in cities}["Galle"] == 2
    assert stats.total == 10
    assert sum(group.count for group in stats.status_distribution) == 10


def test_create_patient_store_for_demo_mode(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PATIENT_STORE_BACKEND", "memory")
    settings = Settings()
    assert settings.store.backend is StoreBackend.MEMORY

    store = create_patient_store(settings)

    assert isinstance(store, InMemoryPatientStore)
    assert store.backend == "memory"


@pytest.mark.anyio("asyncio")
async def test_demo_mode_can_start_empty(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PATIENT_STORE_BACKEND", "memory")
    monkeypatch.setenv("PATIENT_STORE_SEED_DEMO_DATA", "false")
    settings = Settings()

    assert await create_patient_store(settings).count() == 0
