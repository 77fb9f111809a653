"""Application configuration powered by ``pydantic-settings``."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreBackend(str, Enum):
    """Supported patient store implementations."""

    MONGO = "mongo"
    MEMORY = "memory"


class ServerSettings(BaseSettings):
    """Network configuration for the HTTP server."""

    host: str = Field(
        default="0.0.0.0",
        description="Hostname or interface the HTTP server binds to.",
        validation_alias=AliasChoices("PATIENT_RECORDS_HOST", "HOST"),
    )
    port: int = Field(
        default=3000,
        description="Port the HTTP server listens on.",
        validation_alias=AliasChoices("PATIENT_RECORDS_PORT", "PORT"),
    )

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


class MongoSettings(BaseSettings):
    """Connection settings for the MongoDB document store."""

    uri: str = Field(
        default="mongodb://localhost:27017/patient_records",
        description="MongoDB connection string.",
        validation_alias=AliasChoices("MONGODB_URI", "MONGO_URI"),
    )
    database: Optional[str] = Field(
        default=None,
        description="Database name; falls back to the database named in the URI.",
        validation_alias=AliasChoices("MONGODB_DATABASE", "MONGO_DATABASE"),
    )
    collection: str = Field(
        default="patients",
        description="Collection holding patient documents.",
        validation_alias=AliasChoices("MONGODB_COLLECTION", "MONGO_COLLECTION"),
    )
    server_selection_timeout_ms: int = Field(
        default=5000,
        ge=1,
        description="How long the driver waits for a reachable server.",
        validation_alias=AliasChoices("MONGODB_SERVER_SELECTION_TIMEOUT_MS"),
    )

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


class StoreSettings(BaseSettings):
    """Selection of the backing patient store."""

    backend: StoreBackend = Field(
        default=StoreBackend.MONGO,
        description="Either 'mongo' for persistent storage or 'memory' for demo mode.",
        validation_alias=AliasChoices("PATIENT_STORE_BACKEND", "STORE_BACKEND"),
    )
    seed_demo_data: bool = Field(
        default=True,
        description="Preload the sample patients when running the memory backend.",
        validation_alias=AliasChoices("PATIENT_STORE_SEED_DEMO_DATA"),
    )

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


class LoggingSettings(BaseSettings):
    """Logging configuration for the service."""

    level: str = Field(
        default="info",
        description="Logging verbosity level (e.g. debug, info, warning).",
        validation_alias=AliasChoices("PATIENT_RECORDS_LOG_LEVEL", "LOG_LEVEL"),
    )

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


class Settings(BaseSettings):
    """Top-level application settings namespace."""

    server: ServerSettings = Field(default_factory=ServerSettings)
    mongo: MongoSettings = Field(default_factory=MongoSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance for application use."""

    return Settings()


__all__ = [
    "LoggingSettings",
    "MongoSettings",
    "ServerSettings",
    "Settings",
    "StoreBackend",
    "StoreSettings",
    "get_settings",
]
