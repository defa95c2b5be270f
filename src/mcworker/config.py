"""Centralized configuration: Pydantic BaseSettings with TOML + dotenv sources.

Environment variables override the files using ``__`` as the nested
delimiter (e.g. ``ENGINE__HOST=unix:///var/run/docker.sock``).

Priority (highest wins): init args > env vars > .env > config.toml

Usage::

    from mcworker.config import get_settings

    s = get_settings()
    print(s.engine.host)
"""

from __future__ import annotations

from functools import cached_property
from pathlib import Path

from pydantic import BaseModel, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in config.toml)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Base for all config sub-models. Unknown keys are rejected."""

    model_config = {"extra": "forbid"}


class EngineConfig(_StrictModel):
    host: str = "http://localhost:2375"  # or unix:///var/run/docker.sock
    image: str = "itzg/minecraft-server"


class ServerConfig(_StrictModel):
    host: str = "localhost"
    port: int = 8081


class WorkerDefaultsConfig(_StrictModel):
    """Used by ``POST /container`` when the request body leaves a field out."""

    name: str = "minecraft"
    volume_path: str = "./worlds/default"
    port: int = 25565


class DatabaseConfig(_StrictModel):
    path: str = "default.db"


class LoggingConfig(_StrictModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="config.toml",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    engine: EngineConfig = EngineConfig()
    server: ServerConfig = ServerConfig()
    worker_defaults: WorkerDefaultsConfig = WorkerDefaultsConfig()
    database: DatabaseConfig = DatabaseConfig()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > .env > config.toml > file secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    # --- Computed properties ---

    @cached_property
    def database_path(self) -> Path:
        return Path(self.database.path).expanduser().resolve()

    @cached_property
    def default_volume_path(self) -> Path:
        return Path(self.worker_defaults.volume_path).expanduser().resolve()


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for tests)."""
    global _settings
    _settings = None
