from __future__ import annotations

import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from shared.config.settings import Settings, StoreBackend, get_settings

_ENV_NAMES = (
    "PORT",
    "PATIENT_RECORDS_PORT",
    "HOST",
    "PATIENT_RECORDS_HOST",
    "MONGODB_URI",
    "MONGO_URI",
    "MONGODB_DATABASE",
    "MONGODB_COLLECTION",
    "PATIENT_STORE_BACKEND",
    "STORE_BACKEND",
    "LOG_LEVEL",
    "PATIENT_RECORDS_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()


def test_defaults() -> None:
    settings = Settings()

    assert settings.server.port == 3000
    assert settings.mongo.uri == "mongodb://localhost:27017/patient_records"
    assert settings.mongo.collection == "patients"
    assert settings.store.backend is StoreBackend.MONGO
    assert settings.store.seed_demo_data is True
    assert settings.logging.level == "info"


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("MONGODB_URI", "mongodb://db:27017/clinic")
    monkeypatch.setenv("MONGODB_COLLECTION", "people")
    monkeypatch.setenv("PATIENT_STORE_BACKEND", "memory")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings()

    assert settings.server.port == 8080
    assert settings.mongo.uri == "mongodb://db:27017/clinic"
    assert settings.mongo.collection == "people"
    assert settings.store.backend is StoreBackend.MEMORY
    assert settings.logging.level == "debug"


def test_service_specific_port_wins(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("PATIENT_RECORDS_PORT", "9090")

    assert Settings().server.port == 9090


def test_dotenv_file_is_read(tmp_path: Path) -> None:
    (tmp_path / ".env").write_text("MONGODB_DATABASE=records_dev\n", encoding="utf-8")

    assert Settings().mongo.database == "records_dev"


def test_get_settings_is_cached() -> None:
    assert get_settings() is get_settings()
