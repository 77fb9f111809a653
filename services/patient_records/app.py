"""FastAPI application exposing the patient record API."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import APIRouter, Body, Depends, FastAPI, Query, status

from repositories.patients import PatientStore, create_patient_store
from shared.config.settings import get_settings
from shared.http.errors import (
    Envelope,
    FieldViolation,
    PatientNotFoundError,
    PatientValidationError,
    register_exception_handlers,
    success,
)
from shared.observability.logger import configure_logging, get_logger
from shared.observability.middleware import (
    CorrelationIdMiddleware,
    RequestTimingMiddleware,
)

from .identifiers import next_patient_code
from .models import parse_patient_draft, parse_patient_update, writable_fields
from .queries import (
    ALL_FIELDS,
    DEFAULT_LIMIT,
    DEFAULT_SEARCH_LIMIT,
    SearchField,
    build_field_query,
    build_listing_query,
    build_search_query,
    first_name_filter,
)

SERVICE_NAME = "patient_records"

# Fields that must stay unique and so cannot be written to many records at once.
_BULK_FORBIDDEN_FIELDS = ("patientCode", "email")

configure_logging(service_name=SERVICE_NAME, level=get_settings().logging.level)
logger = get_logger(__name__)

_store: PatientStore | None = None


def get_patient_store() -> PatientStore:
    """Return the process-wide :class:`PatientStore`, creating it on first use."""

    global _store
    if _store is None:
        _store = create_patient_store(get_settings())
    return _store


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    global _store
    store = get_patient_store()
    await store.ensure_indexes()
    logger.info("patient_records_started", backend=store.backend)
    try:
        yield
    finally:
        await store.close()
        _store = None
        logger.info("patient_records_stopped", backend=store.backend)


app = FastAPI(title="Patient Records Service", lifespan=lifespan)
router = APIRouter(prefix="/api", tags=["patients"])

app.add_middleware(RequestTimingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
register_exception_handlers(app)

_envelope_route = {"response_model": Envelope, "response_model_exclude_none": True}


@app.get("/health", tags=["health"])
async def health() -> dict[str, str]:
    """Return a simple health payload for orchestration checks."""

    return {"status": "ok", "service": SERVICE_NAME}


@router.post("/patients", status_code=status.HTTP_201_CREATED, **_envelope_route)
async def create_patient(
    payload: dict[str, Any] = Body(...),
    store: PatientStore = Depends(get_patient_store),
) -> Envelope:
    """Create a patient, allocating the next code when none is supplied."""

    draft = parse_patient_draft(payload)
    if draft.patient_code is None:
        draft = draft.model_copy(update={"patient_code": await next_patient_code(store)})
    patient = await store.insert(draft)
    logger.info("patient_created", patient_code=patient.patient_code)
    return success(patient.to_response(), "Patient created successfully")


@router.get("/patients", **_envelope_route)
async def list_patients(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_LIMIT, ge=1),
    sort_by: str | None = Query(None, alias="sortBy"),
    order: str | None = Query(None),
    store: PatientStore = Depends(get_patient_store),
) -> Envelope:
    """Return one page of patients ordered by ``sortBy``/``order``."""

    query = build_listing_query(page=page, limit=limit, sort_by=sort_by, order=order)
    result = await store.page(query)
    return success(result.to_response(), "Patients retrieved successfully")


async def _search_field(
    store: PatientStore, search_field: SearchField, text: str, label: str
) -> Envelope:
    patients = await store.find(build_field_query(search_field, text))
    return success(
        [patient.to_response() for patient in patients],
        f"Found {len(patients)} patients with {label} matching '{text}'",
    )


@router.get("/patients/firstname/{name}", **_envelope_route)
async def search_by_first_name(
    name: str, store: PatientStore = Depends(get_patient_store)
) -> Envelope:
    return await _search_field(store, SearchField.FIRST_NAME, name, "first name")


@router.get("/patients/lastname/{name}", **_envelope_route)
async def search_by_last_name(
    name: str, store: PatientStore = Depends(get_patient_store)
) -> Envelope:
    return await _search_field(store, SearchField.LAST_NAME, name, "last name")


@router.get("/patients/email/{email}", **_envelope_route)
async def search_by_email(
    email: str, store: PatientStore = Depends(get_patient_store)
) -> Envelope:
    return await _search_field(store, SearchField.EMAIL, email, "email")


@router.get("/patients/city/{city}", **_envelope_route)
async def search_by_city(
    city: str, store: PatientStore = Depends(get_patient_store)
) -> Envelope:
    return await _search_field(store, SearchField.NEAREST_CITY, city, "nearest city")


@router.get("/patients/doctor/{name}", **_envelope_route)
async def search_by_doctor(
    name: str, store: PatientStore = Depends(get_patient_store)
) -> Envelope:
    return await _search_field(store, SearchField.ASSIGNED_DOCTOR, name, "assigned doctor")


@router.get("/patients/guardian/{name}", **_envelope_route)
async def search_by_guardian(
    name: str, store: PatientStore = Depends(get_patient_store)
) -> Envelope:
    return await _search_field(store, SearchField.GUARDIAN_NAME, name, "guardian")


@router.put("/patients/firstname/{name}", **_envelope_route)
async def update_by_first_name(
    name: str,
    payload: dict[str, Any] = Body(...),
    store: PatientStore = Depends(get_patient_store),
) -> Envelope:
    """Apply the same partial update to every patient whose first name matches."""

    changes = parse_patient_update(payload).changes()
    forbidden = [
        FieldViolation(field=field, message="cannot be set on many patients at once")
        for field in _BULK_FORBIDDEN_FIELDS
        if field in changes
    ]
    if forbidden:
        raise PatientValidationError(forbidden)
    if not changes:
        raise PatientValidationError(
            [FieldViolation(field="body", message="no updatable fields supplied")]
        )

    outcome = await store.update_matching(first_name_filter(name), changes)
    if outcome.matched == 0:
        raise PatientNotFoundError(name, message="No patients found with that first name")
    logger.info(
        "patients_bulk_updated",
        first_name=name,
        matched=outcome.matched,
        modified=outcome.modified,
    )
    return success(
        {"matchedCount": outcome.matched, "modifiedCount": outcome.modified},
        f"Updated {outcome.modified} patients",
    )


@router.get("/patients/{code}", **_envelope_route)
async def get_patient(
    code: str, store: PatientStore = Depends(get_patient_store)
) -> Envelope:
    patient = await store.find_by_code(code)
    if patient is None:
        raise PatientNotFoundError(code)
    return success(patient.to_response(), "Patient retrieved successfully")


@router.put("/patients/{code}", **_envelope_route)
async def update_patient(
    code: str,
    payload: dict[str, Any] = Body(...),
    store: PatientStore = Depends(get_patient_store),
) -> Envelope:
    """Merge ``payload`` over the stored patient and persist the changed fields."""

    existing = await store.find_by_code(code)
    if existing is None:
        raise PatientNotFoundError(code)

    supplied = parse_patient_update(payload).changes()
    current = writable_fields(existing.model_dump(by_alias=True))
    merged = parse_patient_draft({**current, **supplied}).to_document()
    changes = {key: value for key, value in merged.items() if current.get(key) != value}

    patient = await store.update_by_code(code, changes)
    if patient is None:
        raise PatientNotFoundError(code)
    logger.info("patient_updated", patient_code=code, fields=sorted(changes))
    return success(patient.to_response(), "Patient updated successfully")


@router.delete("/patients/{code}", **_envelope_route)
async def delete_patient(
    code: str, store: PatientStore = Depends(get_patient_store)
) -> Envelope:
    patient = await store.delete_by_code(code)
    if patient is None:
        raise PatientNotFoundError(code)
    logger.info("patient_deleted", patient_code=code)
    return success(patient.to_response(), "Patient deleted successfully")


@router.get("/search/patients", **_envelope_route)
async def search_patients(
    query: str | None = Query(None, description="Text to look for"),
    field: str | None = Query(ALL_FIELDS, description="Searchable field or 'all'"),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_SEARCH_LIMIT, ge=1),
    sort_by: str | None = Query(None, alias="sortBy"),
    order: str | None = Query(None),
    store: PatientStore = Depends(get_patient_store),
) -> Envelope:
    """Case-insensitive substring search over one field or all of them."""

    patient_query = build_search_query(
        query, field, page=page, limit=limit, sort_by=sort_by, order=order
    )
    result = await store.page(patient_query)
    return success(
        result.to_response(),
        f"Found {result.total} patients matching '{query.strip() if query else ''}'",
    )


@router.get("/stats/patients", **_envelope_route)
async def patient_stats(store: PatientStore = Depends(get_patient_store)) -> Envelope:
    stats = await store.stats()
    return success(stats.to_response(), "Statistics retrieved successfully")


app.include_router(router)


def get_app() -> FastAPI:
    """Return the FastAPI app instance."""

    return app


__all__ = ["app", "get_app", "get_patient_store", "health"]
