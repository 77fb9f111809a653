"""Translate request parameters into patient store queries and aggregations.

Every query object renders two ways: as a MongoDB filter/sort/pipeline for the
persistent store and as plain Python evaluation for the in-memory store. Both
renderings must agree so the demo backend behaves like the real one.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence, TypeVar

from shared.http.errors import InvalidParameterError, MissingParameterError

from .models import Patient

ALL_FIELDS = "all"
DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
DEFAULT_SEARCH_LIMIT = 100
TOP_GROUP_LIMIT = 10


class SearchField(str, Enum):
    """String attributes eligible for substring search."""

    FIRST_NAME = "firstName"
    LAST_NAME = "lastName"
    EMAIL = "email"
    NEAREST_CITY = "nearestCity"
    ASSIGNED_DOCTOR = "assignedDoctor"
    GUARDIAN_NAME = "guardianName"
    PATIENT_CODE = "patientCode"


SEARCHABLE_FIELDS: tuple[SearchField, ...] = tuple(SearchField)


class SortField(str, Enum):
    """Scalar attributes a listing may be ordered by."""

    PATIENT_CODE = "patientCode"
    FIRST_NAME = "firstName"
    LAST_NAME = "lastName"
    EMAIL = "email"
    NEAREST_CITY = "nearestCity"
    ASSIGNED_DOCTOR = "assignedDoctor"
    GUARDIAN_NAME = "guardianName"
    STATUS = "status"
    LAST_VISIT_DATE = "lastVisitDate"
    CREATED_AT = "createdAt"
    UPDATED_AT = "updatedAt"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


_E = TypeVar("_E", bound=Enum)


def _parse_choice(enum_cls: type[_E], value: str, parameter: str) -> _E:
    try:
        return enum_cls(value)
    except ValueError:
        raise InvalidParameterError(
            parameter, value, [member.value for member in enum_cls]
        ) from None


def parse_search_fields(value: str | None) -> tuple[SearchField, ...]:
    """Resolve the ``field`` parameter; ``all`` or blank selects every field."""

    if value is None or not value.strip() or value.strip() == ALL_FIELDS:
        return SEARCHABLE_FIELDS
    return (_parse_choice(SearchField, value.strip(), "field"),)


def parse_sort_field(value: str | None) -> SortField:
    if value is None or not value.strip():
        return SortField.CREATED_AT
    return _parse_choice(SortField, value.strip(), "sortBy")


def parse_sort_order(value: str | None) -> SortOrder:
    if value is None or not value.strip():
        return SortOrder.DESC
    return _parse_choice(SortOrder, value.strip().lower(), "order")


@dataclass(frozen=True)
class TextFilter:
    """Case-insensitive literal substring match over one or more fields."""

    text: str
    fields: tuple[SearchField, ...] = SEARCHABLE_FIELDS

    def __post_init__(self) -> None:
        if not self.fields:
            raise ValueError("TextFilter requires at least one field")

    def to_mongo(self) -> dict[str, Any]:
        """Return the equivalent MongoDB filter document."""

        pattern = re.escape(self.text)
        clauses = [
            {search_field.value: {"$regex": pattern, "$options": "i"}}
            for search_field in self.fields
        ]
        if len(clauses) == 1:
            return clauses[0]
        return {"$or": clauses}

    def matches(self, document: Mapping[str, Any]) -> bool:
        needle = self.text.lower()
        for search_field in self.fields:
            value = document.get(search_field.value)
            if isinstance(value, str) and needle in value.lower():
                return True
        return False


@dataclass(frozen=True)
class Pagination:
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT

    def __post_init__(self) -> None:
        if self.page < 1:
            raise InvalidParameterError("page", self.page)
        if self.limit < 1:
            raise InvalidParameterError("limit", self.limit)

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def total_pages(self, total: int) -> int:
        return math.ceil(total / self.limit)


def _sort_key(sort_field: SortField):
    def key(document: Mapping[str, Any]) -> tuple[bool, Any]:
        value = document.get(sort_field.value)
        # Missing values sort first ascending, as in MongoDB.
        return (value is not None, value if value is not None else 0)

    return key


@dataclass(frozen=True)
class PatientQuery:
    """A filtered, ordered, optionally paginated patient lookup.

    Records with equal sort keys come back in an unspecified order.
    """

    text_filter: TextFilter | None = None
    sort_by: SortField = SortField.CREATED_AT
    order: SortOrder = SortOrder.DESC
    pagination: Pagination | None = None

    def to_mongo_filter(self) -> dict[str, Any]:
        if self.text_filter is None:
            return {}
        return self.text_filter.to_mongo()

    def to_mongo_sort(self) -> list[tuple[str, int]]:
        direction = 1 if self.order is SortOrder.ASC else -1
        return [(self.sort_by.value, direction)]

    def matches(self, document: Mapping[str, Any]) -> bool:
        return self.text_filter is None or self.text_filter.matches(document)

    def apply(self, documents: Iterable[Mapping[str, Any]]) -> list[Mapping[str, Any]]:
        """Filter, sort and slice ``documents`` in memory."""

        matched = [document for document in documents if self.matches(document)]
        matched.sort(
            key=_sort_key(self.sort_by), reverse=self.order is SortOrder.DESC
        )
        if self.pagination is None:
            return matched
        start = self.pagination.skip
        return matched[start : start + self.pagination.limit]


def build_listing_query(
    page: int = DEFAULT_PAGE,
    limit: int = DEFAULT_LIMIT,
    sort_by: str | None = None,
    order: str | None = None,
) -> PatientQuery:
    """Return the unfiltered paginated listing query."""

    return PatientQuery(
        sort_by=parse_sort_field(sort_by),
        order=parse_sort_order(order),
        pagination=Pagination(page=page, limit=limit),
    )


def build_field_query(search_field: SearchField, text: str) -> PatientQuery:
    """Return an unpaginated substring search against a single field."""

    return PatientQuery(text_filter=TextFilter(text=text, fields=(search_field,)))


def build_search_query(
    query: str | None,
    field_name: str | None = ALL_FIELDS,
    *,
    page: int = DEFAULT_PAGE,
    limit: int = DEFAULT_SEARCH_LIMIT,
    sort_by: str | None = None,
    order: str | None = None,
) -> PatientQuery:
    """Return the free-text search query, rejecting a missing ``query``."""

    if query is None or not query.strip():
        raise MissingParameterError("query", message="Search query is required")
    return PatientQuery(
        text_filter=TextFilter(text=query.strip(), fields=parse_search_fields(field_name)),
        sort_by=parse_sort_field(sort_by),
        order=parse_sort_order(order),
        pagination=Pagination(page=page, limit=limit),
    )


def first_name_filter(name: str) -> TextFilter:
    """Return the filter selecting records for a bulk first-name update."""

    return TextFilter(text=name, fields=(SearchField.FIRST_NAME,))


@dataclass
class PatientPage:
    patients: list[Patient]
    total: int
    pagination: Pagination

    @property
    def total_pages(self) -> int:
        return self.pagination.total_pages(self.total)

    def to_response(self) -> dict[str, Any]:
        return {
            "patients": [patient.to_response() for patient in self.patients],
            "total": self.total,
            "totalPages": self.total_pages,
            "currentPage": self.pagination.page,
            "limit": self.pagination.limit,
        }


@dataclass(frozen=True)
class GroupCount:
    value: Any
    count: int

    def to_response(self) -> dict[str, Any]:
        return {"value": self.value, "count": self.count}


@dataclass(frozen=True)
class Grouping:
    """Count records per distinct value of ``field``, optionally top-N."""

    field: str
    top: int | None = None

    def to_pipeline(self) -> list[dict[str, Any]]:
        pipeline: list[dict[str, Any]] = [
            {"$group": {"_id": f"${self.field}", "count": {"$sum": 1}}}
        ]
        if self.top is not None:
            pipeline.append({"$sort": {"count": -1}})
            pipeline.append({"$limit": self.top})
        return pipeline

    def from_rows(self, rows: Iterable[Mapping[str, Any]]) -> list[GroupCount]:
        return [GroupCount(value=row.get("_id"), count=int(row["count"])) for row in rows]

    def apply(self, documents: Iterable[Mapping[str, Any]]) -> list[GroupCount]:
        """Evaluate the grouping in memory."""

        counts = Counter(document.get(self.field) for document in documents)
        groups = [GroupCount(value=value, count=count) for value, count in counts.items()]
        if self.top is None:
            return groups
        groups.sort(key=lambda group: group.count, reverse=True)
        return groups[: self.top]


STATUS_GROUPING = Grouping("status")
CITY_GROUPING = Grouping("nearestCity", top=TOP_GROUP_LIMIT)
DOCTOR_GROUPING = Grouping("assignedDoctor", top=TOP_GROUP_LIMIT)


@dataclass
class PatientStats:
    total: int
    status_distribution: Sequence[GroupCount] = field(default_factory=list)
    top_cities: Sequence[GroupCount] = field(default_factory=list)
    top_doctors: Sequence[GroupCount] = field(default_factory=list)

    def to_response(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "statusDistribution": [group.to_response() for group in self.status_distribution],
            "topCities": [group.to_response() for group in self.top_cities],
            "topDoctors": [group.to_response() for group in self.top_doctors],
        }


__all__ = [
    "ALL_FIELDS",
    "CITY_GROUPING",
    "DEFAULT_LIMIT",
    "DEFAULT_PAGE",
    "DEFAULT_SEARCH_LIMIT",
    "DOCTOR_GROUPING",
    "GroupCount",
    "Grouping",
    "Pagination",
    "PatientPage",
    "PatientQuery",
    "PatientStats",
    "SEARCHABLE_FIELDS",
    "STATUS_GROUPING",
    "SearchField",
    "SortField",
    "SortOrder",
    "TOP_GROUP_LIMIT",
    "TextFilter",
    "build_field_query",
    "build_listing_query",
    "build_search_query",
    "first_name_filter",
    "parse_search_fields",
    "parse_sort_field",
    "parse_sort_order",
]
