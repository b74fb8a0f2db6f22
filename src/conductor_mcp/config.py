"""Configuration management for Conductor MCP."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

APPROVAL_MODES = ("suggest", "auto-edit", "full-auto")


class ConductorSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    log_level: str = Field(default="INFO", validation_alias="CONDUCTOR_LOG_LEVEL")
    command_timeout_ms: int = Field(default=120_000, validation_alias="CONDUCTOR_COMMAND_TIMEOUT_MS")
    max_buffer_bytes: int = Field(
        default=10 * 1024 * 1024, validation_alias="CONDUCTOR_MAX_BUFFER_BYTES"
    )
    max_concurrent: int = Field(default=5, validation_alias="CONDUCTOR_MAX_CONCURRENT")
    kill_grace_seconds: float = Field(default=5.0, validation_alias="CONDUCTOR_KILL_GRACE_SECONDS")
    approval_mode: str = Field(default="full-auto", validation_alias="CONDUCTOR_APPROVAL_MODE")
    plan_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("plans"),), validation_alias="CONDUCTOR_PLAN_PATHS"
    )
    workdir: Path | None = Field(default=None, validation_alias="CONDUCTOR_WORKDIR")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "CONDUCTOR_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("approval_mode")
    @classmethod
    def _normalize_approval_mode(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in APPROVAL_MODES:
            raise ValueError(f"CONDUCTOR_APPROVAL_MODE must be one of {', '.join(APPROVAL_MODES)}")
        return normalized

    @field_validator("plan_paths", mode="before")
    @classmethod
    def _parse_plan_paths(cls, value):
        if value is None or value == "":
            return (Path("plans"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("plans"),)
        raise TypeError("CONDUCTOR_PLAN_PATHS must be a list of paths or a path-separated string")

    @field_validator("command_timeout_ms", "max_buffer_bytes", "max_concurrent")
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("Timeouts, buffer caps and concurrency caps must be >= 1")
        return value

    @field_validator("kill_grace_seconds")
    @classmethod
    def _validate_grace(cls, value: float) -> float:
        if value < 0:
            raise ValueError("CONDUCTOR_KILL_GRACE_SECONDS must be >= 0")
        return value


@lru_cache(maxsize=1)
def get_settings() -> ConductorSettings:
    """Return cached settings instance."""

    settings = ConductorSettings()
    settings.plan_paths = tuple(path.expanduser().resolve() for path in settings.plan_paths)
    if settings.workdir is not None:
        settings.workdir = settings.workdir.expanduser().resolve()
    return settings


__all__ = ["APPROVAL_MODES", "ConductorSettings", "get_settings"]
