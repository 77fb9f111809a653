"""Patient store abstractions backed by MongoDB or process memory."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping
from uuid import uuid4

from pymongo import ASCENDING, AsyncMongoClient, ReturnDocument
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.errors import DuplicateKeyError

from repositories.sample_data import load_sample_patients
from services.patient_records.identifiers import highest_code_pipeline, parse_patient_code
from services.patient_records.models import Patient, PatientDraft, utcnow
from services.patient_records.queries import (
    CITY_GROUPING,
    DOCTOR_GROUPING,
    STATUS_GROUPING,
    GroupCount,
    Grouping,
    PatientPage,
    PatientQuery,
    PatientStats,
    TextFilter,
)
from shared.config.settings import MongoSettings, Settings, StoreBackend
from shared.http.errors import DuplicatePatientError
from shared.observability.logger import get_logger

logger = get_logger(__name__)

DEFAULT_DATABASE = "patient_records"
UNIQUE_FIELDS = ("patientCode", "email")
LOOKUP_FIELDS = ("firstName", "lastName", "nearestCity", "assignedDoctor", "guardianName")

_INDEX_NAME_PATTERN = re.compile(r"index:\s+(\w+?)_-?1\b")


@dataclass(frozen=True)
class UpdateOutcome:
    """Result of a multi-record update."""

    matched: int
    modified: int


class PatientStore(ABC):
    """Interface over the collection holding patient records.

    Multi-step operations are not atomic; concurrent writers surface as
    duplicate or not-found results rather than being prevented.
    """

    backend: str = "abstract"

    @abstractmethod
    async def insert(self, draft: PatientDraft) -> Patient:
        """Persist ``draft`` (which must carry a code) and return the record."""

    @abstractmethod
    async def find_by_code(self, code: str) -> Patient | None:
        """Return the record with ``code`` if one exists."""

    @abstractmethod
    async def find(self, query: PatientQuery) -> list[Patient]:
        """Return records matching ``query`` in its sort order and page."""

    @abstractmethod
    async def count(self, query: PatientQuery | None = None) -> int:
        """Return how many records match ``query`` ignoring pagination."""

    @abstractmethod
    async def update_by_code(
        self, code: str, changes: Mapping[str, Any]
    ) -> Patient | None:
        """Apply ``changes`` to the record with ``code`` and return it."""

    @abstractmethod
    async def update_matching(
        self, text_filter: TextFilter, changes: Mapping[str, Any]
    ) -> UpdateOutcome:
        """Apply ``changes`` to every record matching ``text_filter``."""

    @abstractmethod
    async def delete_by_code(self, code: str) -> Patient | None:
        """Remove and return the record with ``code``."""

    @abstractmethod
    async def highest_patient_number(self) -> int | None:
        """Return the largest numeric code in use, or ``None`` when empty."""

    @abstractmethod
    async def group_counts(self, grouping: Grouping) -> list[GroupCount]:
        """Return record counts per distinct value described by ``grouping``."""

    async def ensure_indexes(self) -> None:
        """Create any indexes the backend needs."""

    async def close(self) -> None:
        """Release backend resources."""

    async def page(self, query: PatientQuery) -> PatientPage:
        """Return one page of ``query`` together with the matching total."""

        if query.pagination is None:
            raise ValueError("page() requires a paginated query")
        patients = await self.find(query)
        total = await self.count(query)
        return PatientPage(patients=patients, total=total, pagination=query.pagination)

    async def stats(self) -> PatientStats:
        """Return the aggregate statistics payload over the whole collection."""

        return PatientStats(
            total=await self.count(),
            status_distribution=await self.group_counts(STATUS_GROUPING),
            top_cities=await self.group_counts(CITY_GROUPING),
            top_doctors=await self.group_counts(DOCTOR_GROUPING),
        )


def duplicate_error_from(exc: DuplicateKeyError) -> DuplicatePatientError:
    """Return a :class:`DuplicatePatientError` naming the colliding field."""

    details = exc.details or {}
    key_value = details.get("keyValue") or {}
    if isinstance(key_value, Mapping) and key_value:
        field, value = next(iter(key_value.items()))
        return DuplicatePatientError(str(field), value)
    key_pattern = details.get("keyPattern") or {}
    if isinstance(key_pattern, Mapping) and key_pattern:
        return DuplicatePatientError(str(next(iter(key_pattern))))
    match = _INDEX_NAME_PATTERN.search(str(details.get("errmsg") or exc))
    if match:
        return DuplicatePatientError(match.group(1))
    return DuplicatePatientError("record")


class MongoPatientStore(PatientStore):
    """Patient store backed by a MongoDB collection via pymongo's asyncio API."""

    backend = "mongo"

    def __init__(
        self,
        collection: AsyncCollection,
        *,
        client: AsyncMongoClient | None = None,
    ) -> None:
        self._collection = collection
        self._client = client

    @classmethod
    def from_settings(cls, settings: MongoSettings) -> "MongoPatientStore":
        client: AsyncMongoClient = AsyncMongoClient(
            settings.uri,
            serverSelectionTimeoutMS=settings.server_selection_timeout_ms,
        )
        if settings.database:
            database = client[settings.database]
        else:
            database = client.get_default_database(default=DEFAULT_DATABASE)
        logger.info(
            "patient_store_configured",
            backend=cls.backend,
            database=database.name,
            collection=settings.collection,
        )
        return cls(database[settings.collection], client=client)

    async def insert(self, draft: PatientDraft) -> Patient:
        now = utcnow()
        document = {**draft.to_document(), "createdAt": now, "updatedAt": now}
        try:
            result = await self._collection.insert_one(document)
        except DuplicateKeyError as exc:
            raise duplicate_error_from(exc) from exc
        document["_id"] = result.inserted_id
        return Patient.from_document(document)

    async def find_by_code(self, code: str) -> Patient | None:
        document = await self._collection.find_one({"patientCode": code})
        return Patient.from_document(document) if document else None

    async def find(self, query: PatientQuery) -> list[Patient]:
        cursor = self._collection.find(query.to_mongo_filter()).sort(
            query.to_mongo_sort()
        )
        if query.pagination is not None:
            cursor = cursor.skip(query.pagination.skip).limit(query.pagination.limit)
        documents = await cursor.to_list()
        return [Patient.from_document(document) for document in documents]

    async def count(self, query: PatientQuery | None = None) -> int:
        criteria = query.to_mongo_filter() if query is not None else {}
        return await self._collection.count_documents(criteria)

    async def update_by_code(
        self, code: str, changes: Mapping[str, Any]
    ) -> Patient | None:
        try:
            document = await self._collection.find_one_and_update(
                {"patientCode": code},
                {"$set": {**changes, "updatedAt": utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError as exc:
            raise duplicate_error_from(exc) from exc
        return Patient.from_document(document) if document else None

    async def update_matching(
        self, text_filter: TextFilter, changes: Mapping[str, Any]
    ) -> UpdateOutcome:
        criteria = text_filter.to_mongo()
        matched = await self._collection.count_documents(criteria)
        if matched == 0 or not changes:
            return UpdateOutcome(matched=matched, modified=0)

        # Only records holding a different value get written and re-stamped.
        differs = {"$or": [{key: {"$ne": value}} for key, value in changes.items()]}
        try:
            result = await self._collection.update_many(
                {"$and": [criteria, differs]},
                {"$set": {**changes, "updatedAt": utcnow()}},
            )
        except DuplicateKeyError as exc:
            raise duplicate_error_from(exc) from exc
        return UpdateOutcome(matched=matched, modified=result.modified_count)

    async def delete_by_code(self, code: str) -> Patient | None:
        document = await self._collection.find_one_and_delete({"patientCode": code})
        return Patient.from_document(document) if document else None

    async def highest_patient_number(self) -> int | None:
        cursor = await self._collection.aggregate(highest_code_pipeline())
        rows = await cursor.to_list()
        if not rows:
            return None
        return int(rows[0]["number"])

    async def group_counts(self, grouping: Grouping) -> list[GroupCount]:
        cursor = await self._collection.aggregate(grouping.to_pipeline())
        return grouping.from_rows(await cursor.to_list())

    async def ensure_indexes(self) -> None:
        for field in UNIQUE_FIELDS:
            await self._collection.create_index([(field, ASCENDING)], unique=True)
        for field in LOOKUP_FIELDS:
            await self._collection.create_index([(field, ASCENDING)])
        logger.info("patient_store_indexes_ensured", backend=self.backend)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            logger.info("patient_store_closed", backend=self.backend)


class InMemoryPatientStore(PatientStore):
    """Non-durable store keyed by patient code, used for demo mode and tests.

    Relies on the single-threaded event loop: no method suspends between
    reading and writing the map.
    """

    backend = "memory"

    def __init__(
        self,
        drafts: Iterable[PatientDraft] = (),
        *,
        clock: Callable[[], Any] = utcnow,
    ) -> None:
        self._records: dict[str, dict[str, Any]] = {}
        self._clock = clock
        for draft in drafts:
            self._insert_document(draft)

    def _check_unique(self, document: Mapping[str, Any], current_code: str | None) -> None:
        for field in UNIQUE_FIELDS:
            value = document.get(field)
            for code, record in self._records.items():
                if code != current_code and record.get(field) == value:
                    raise DuplicatePatientError(field, value)

    def _insert_document(self, draft: PatientDraft) -> dict[str, Any]:
        if draft.patient_code is None:
            raise ValueError("patient code must be allocated before insertion")
        now = self._clock()
        document = {
            "id": uuid4().hex,
            **draft.to_document(),
            "createdAt": now,
            "updatedAt": now,
        }
        self._check_unique(document, current_code=None)
        self._records[draft.patient_code] = document
        return document

    async def insert(self, draft: PatientDraft) -> Patient:
        return Patient.from_document(self._insert_document(draft))

    async def find_by_code(self, code: str) -> Patient | None:
        document = self._records.get(code)
        return Patient.from_document(document) if document else None

    async def find(self, query: PatientQuery) -> list[Patient]:
        return [
            Patient.from_document(document)
            for document in query.apply(self._records.values())
        ]

    async def count(self, query: PatientQuery | None = None) -> int:
        if query is None:
            return len(self._records)
        return sum(1 for document in self._records.values() if query.matches(document))

    async def update_by_code(
        self, code: str, changes: Mapping[str, Any]
    ) -> Patient | None:
        current = self._records.get(code)
        if current is None:
            return None
        candidate = {**current, **changes, "updatedAt": self._clock()}
        self._check_unique(candidate, current_code=code)
        new_code = candidate["patientCode"]
        if new_code != code:
            del self._records[code]
        self._records[new_code] = candidate
        return Patient.from_document(candidate)

    async def update_matching(
        self, text_filter: TextFilter, changes: Mapping[str, Any]
    ) -> UpdateOutcome:
        targets = [
            (code, document)
            for code, document in self._records.items()
            if text_filter.matches(document)
        ]
        modified = 0
        for code, document in targets:
            delta = {key: value for key, value in changes.items() if document.get(key) != value}
            if not delta:
                continue
            self._check_unique({**document, **delta}, current_code=code)
            document.update(delta)
            document["updatedAt"] = self._clock()
            modified += 1
        return UpdateOutcome(matched=len(targets), modified=modified)

    async def delete_by_code(self, code: str) -> Patient | None:
        document = self._records.pop(code, None)
        return Patient.from_document(document) if document else None

    async def highest_patient_number(self) -> int | None:
        numbers = [
            number
            for number in (parse_patient_code(code) for code in self._records)
            if number is not None
        ]
        return max(numbers, default=None)

    async def group_counts(self, grouping: Grouping) -> list[GroupCount]:
        return grouping.apply(self._records.values())


def create_patient_store(settings: Settings) -> PatientStore:
    """Return the store selected by ``settings.store.backend``."""

    if settings.store.backend is StoreBackend.MEMORY:
        drafts = load_sample_patients() if settings.store.seed_demo_data else []
        logger.info(
            "patient_store_configured",
            backend=InMemoryPatientStore.backend,
            seeded=len(drafts),
        )
        return InMemoryPatientStore(drafts)
    return MongoPatientStore.from_settings(settings.mongo)


__all__ = [
    "InMemoryPatientStore",
    "LOOKUP_FIELDS",
    "MongoPatientStore",
    "PatientStore",
    "UNIQUE_FIELDS",
    "UpdateOutcome",
    "create_patient_store",
    "duplicate_error_from",
]
