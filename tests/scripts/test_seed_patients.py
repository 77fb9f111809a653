from __future__ import annotations

from typing import Iterable

import pytest

from repositories.patients import InMemoryPatientStore
from scripts import seed_patients
from shared.config.settings import MongoSettings


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class _RecordingStore(InMemoryPatientStore):
    instances: list["_RecordingStore"] = []

    def __init__(self, settings: MongoSettings, drafts=()) -> None:
        super().__init__(drafts)
        self.settings = settings
        self.indexed = False
        self.closed = False
        type(self).instances.append(self)

    async def ensure_indexes(self) -> None:
        self.indexed = True

    async def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def _reset_store_instances() -> Iterable[None]:
    _RecordingStore.instances.clear()
    yield
    _RecordingStore.instances.clear()


def _install_store(monkeypatch: pytest.MonkeyPatch, *, preload: bool = False) -> None:
    def _from_settings(settings: MongoSettings) -> _RecordingStore:
        drafts = seed_patients.load_sample_patients()[:2] if preload else ()
        return _RecordingStore(settings, drafts)

    monkeypatch.setattr(seed_patients.MongoPatientStore, "from_settings", _from_settings)


def test_main_seeds_empty_collection(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    _install_store(monkeypatch)

    exit_code = seed_patients.main(
        ["--mongodb-uri", "mongodb://db:27017/clinic", "--collection", "people"]
    )

    assert exit_code == 0
    store = _RecordingStore.instances[0]
    assert store.settings.uri == "mongodb://db:27017/clinic"
    assert store.settings.collection == "people"
    assert store.indexed is True
    assert store.closed is True

    output = capsys.readouterr().out
    assert "P004: Maria Garcia (Critical)" in output
    assert "Patient status distribution:" in output
    assert "Kandy: 3 patients" in output
    assert "Inserted 10 sample patients." in output


def test_main_skips_populated_collection(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    _install_store(monkeypatch, preload=True)

    assert seed_patients.main([]) == 0

    output = capsys.readouterr().out
    assert "Found 2 existing patients" in output
    assert "Inserted 0 sample patients." in output
    assert _RecordingStore.instances[0].closed is True


@pytest.mark.anyio("asyncio")
async def test_force_replaces_existing_patients() -> None:
    store = InMemoryPatientStore(seed_patients.load_sample_patients()[:3])

    inserted = await seed_patients.seed(store, force=True)

    assert inserted == 10
    assert await store.count() == 10

