"""Configuration management for Sherpa MCP."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class SherpaSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    home: Path = Field(default=Path("~/.sherpa"), validation_alias="SHERPA_HOME")
    workflow_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(), validation_alias="SHERPA_WORKFLOW_PATHS"
    )
    log_level: str = Field(default="INFO", validation_alias="SHERPA_LOG_LEVEL")
    log_dir: Path | None = Field(default=None, validation_alias="SHERPA_LOG_DIR")
    state_max_age_hours: float = Field(default=24.0, validation_alias="SHERPA_STATE_MAX_AGE_HOURS")
    save_attempts: int = Field(default=3, validation_alias="SHERPA_SAVE_ATTEMPTS")
    retry_base_delay: float = Field(default=1.0, validation_alias="SHERPA_RETRY_BASE_DELAY")
    retry_max_delay: float = Field(default=5.0, validation_alias="SHERPA_RETRY_MAX_DELAY")
    completion_rules_path: Path | None = Field(
        default=None, validation_alias="SHERPA_COMPLETION_RULES"
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "SHERPA_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("workflow_paths", mode="before")
    @classmethod
    def _parse_workflow_paths(cls, value):
        if value is None or value == "":
            return ()
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts)
        raise TypeError("SHERPA_WORKFLOW_PATHS must be a list of paths or a path-separated string")

    @field_validator("state_max_age_hours")
    @classmethod
    def _validate_max_age(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("SHERPA_STATE_MAX_AGE_HOURS must be > 0")
        return value

    @field_validator("save_attempts")
    @classmethod
    def _validate_save_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("SHERPA_SAVE_ATTEMPTS must be >= 1")
        return value

    @field_validator("retry_base_delay", "retry_max_delay")
    @classmethod
    def _validate_delay(cls, value: float) -> float:
        if value < 0:
            raise ValueError("Retry delays must be >= 0")
        return value

    @property
    def resolved_workflow_paths(self) -> tuple[Path, ...]:
        """Workflow directories, defaulting to ``<home>/workflows``."""

        return self.workflow_paths or (self.home / "workflows",)

    @property
    def resolved_log_dir(self) -> Path:
        return self.log_dir or self.home / "logs"


@lru_cache(maxsize=1)
def get_settings() -> SherpaSettings:
    """Return cached settings instance."""

    settings = SherpaSettings()
    settings.home = settings.home.expanduser().resolve()
    settings.workflow_paths = tuple(path.expanduser().resolve() for path in settings.workflow_paths)
    if settings.log_dir is not None:
        settings.log_dir = settings.log_dir.expanduser().resolve()
    if settings.completion_rules_path is not None:
        settings.completion_rules_path = settings.completion_rules_path.expanduser().resolve()
    return settings


__all__ = ["SherpaSettings", "get_settings"]
