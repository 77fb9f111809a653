"""Load the bundled sample patients into MongoDB."""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Iterable

from repositories.patients import MongoPatientStore, PatientStore
from repositories.sample_data import load_sample_patients
from services.patient_records.queries import CITY_GROUPING, STATUS_GROUPING, PatientQuery
from shared.config.settings import MongoSettings, get_settings


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=(
            "Insert the sample patients into the configured MongoDB collection "
            "and print the resulting status and city distributions."
        )
    )
    parser.add_argument(
        "--mongodb-uri",
        dest="mongodb_uri",
        default=None,
        help="MongoDB connection string (default: MONGODB_URI or the configured default).",
    )
    parser.add_argument(
        "--collection",
        default=None,
        help="Collection to seed (default: the configured patient collection).",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Delete existing patients before seeding instead of skipping.",
    )
    return parser


def _resolve_settings(args: argparse.Namespace) -> MongoSettings:
    overrides = {}
    if args.mongodb_uri:
        overrides["uri"] = args.mongodb_uri
    if args.collection:
        overrides["collection"] = args.collection
    return get_settings().mongo.model_copy(update=overrides)


async def seed(store: PatientStore, *, force: bool = False) -> int:
    """Insert the sample patients into ``store``; return how many were added."""

    existing = await store.count()
    if existing and not force:
        print(
            f"Found {existing} existing patients. Skipping seeding to avoid duplicates "
            "(use --force to replace them)."
        )
        return 0

    if existing:
        removed = 0
        for patient in await store.find(PatientQuery()):
            if await store.delete_by_code(patient.patient_code) is not None:
                removed += 1
        print(f"Removed {removed} existing patients.")

    inserted = 0
    for draft in load_sample_patients():
        patient = await store.insert(draft)
        inserted += 1
        print(f"   - {patient.patient_code}: {patient.full_name} ({patient.status})")

    print("\nPatient status distribution:")
    for group in await store.group_counts(STATUS_GROUPING):
        print(f"   - {group.value}: {group.count} patients")

    print("\nPatients by city:")
    for group in await store.group_counts(CITY_GROUPING):
        print(f"   - {group.value}: {group.count} patients")

    return inserted


async def _run_async(args: argparse.Namespace) -> int:
    store = MongoPatientStore.from_settings(_resolve_settings(args))
    try:
        await store.ensure_indexes()
        inserted = await seed(store, force=args.force)
    finally:
        await store.close()

    print(f"\nInserted {inserted} sample patients.")
    return 0


def main(argv: Iterable[str] | None = None) -> int:
    parser = _build_parser()
    parsed_args = parser.parse_args(None if argv is None else list(argv))
    try:
        return asyncio.run(_run_async(parsed_args))
    except KeyboardInterrupt:  # pragma: no cover - manual cancellation guard
        return 130
    except Exception as exc:  # pragma: no cover - surface script errors cleanly
        print(f"Error seeding database: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
