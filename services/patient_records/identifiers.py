"""Sequential patient code allocation.

Codes look like ``P001``: the letter ``P`` followed by a decimal number padded
to at least three digits. Numbers past 999 widen the code (``P1000``) rather
than wrapping, up to 18 ASCII digits so every code fits a 64-bit integer.
Allocation is advisory: two concurrent callers may receive the same code,
and the loser is reported as a duplicate at insertion time.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from repositories.patients import PatientStore

CODE_PREFIX = "P"
CODE_WIDTH = 3
# Largest digit count whose value still fits a signed 64-bit integer.
MAX_CODE_DIGITS = 18
FIRST_PATIENT_CODE = f"{CODE_PREFIX}{1:0{CODE_WIDTH}d}"

_CODE_PATTERN = re.compile(rf"^{CODE_PREFIX}([0-9]{{1,{MAX_CODE_DIGITS}}})$")


def parse_patient_code(code: str) -> int | None:
    """Return the numeric part of ``code``, or ``None`` for foreign formats."""

    match = _CODE_PATTERN.match(code.strip()) if isinstance(code, str) else None
    if match is None:
        return None
    return int(match.group(1))


def format_patient_code(number: int) -> str:
    """Render ``number`` as a patient code."""

    if number < 1:
        raise ValueError("patient code numbers start at 1")
    if number >= 10**MAX_CODE_DIGITS:
        raise ValueError(f"patient code numbers are limited to {MAX_CODE_DIGITS} digits")
    return f"{CODE_PREFIX}{number:0{CODE_WIDTH}d}"


def successor_code(highest: int | None) -> str:
    """Return the code following ``highest``, or the first code when empty."""

    if highest is None:
        return FIRST_PATIENT_CODE
    return format_patient_code(highest + 1)


def highest_code_pipeline(field: str = "patientCode") -> list[dict[str, Any]]:
    """Aggregation pipeline yielding ``{"number": n}`` for the largest code.

    The digits are converted to integers before sorting so ``P1000`` ranks
    above ``P999``.
    """

    return [
        {"$match": {field: {"$regex": f"^{CODE_PREFIX}[0-9]{{1,{MAX_CODE_DIGITS}}}$"}}},
        {
            "$project": {
                "_id": 0,
                "number": {
                    "$toLong": {
                        "$substrCP": [
                            f"${field}",
                            len(CODE_PREFIX),
                            {"$subtract": [{"$strLenCP": f"${field}"}, len(CODE_PREFIX)]},
                        ]
                    }
                },
            }
        },
        {"$sort": {"number": -1}},
        {"$limit": 1},
    ]


async def next_patient_code(store: "PatientStore") -> str:
    """Return the code to assign to the next patient created in ``store``."""

    return successor_code(await store.highest_patient_number())


__all__ = [
    "CODE_PREFIX",
    "FIRST_PATIENT_CODE",
    "MAX_CODE_DIGITS",
    "format_patient_code",
    "highest_code_pipeline",
    "next_patient_code",
    "parse_patient_code",
    "successor_code",
]
