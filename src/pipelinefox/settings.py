"""
Centralized settings for pipelinefox.

:class:`PipelineFoxSettings` is a single validated, cached source of
truth. Every field can be set through a ``PIPELINEFOX_*`` environment
variable (e.g. ``PIPELINEFOX_DEFAULT_IMAGE=alpine:3.20``) or a ``.env``
file. CLI flags override settings on top.

Tags:
    pipelinefox, configuration, settings, pydantic
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pipelinefox.model import DEFAULT_IMAGE


class PipelineFoxSettings(BaseSettings):
    """Runner configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PIPELINEFOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Images / runtime ─────────────────────────────────────────
    default_image: str = Field(default=DEFAULT_IMAGE, description="Image for jobs without one")
    runtime: Literal["docker", "local"] = Field(default="docker")
    docker_binary: str = Field(default="docker", description="Container CLI (docker, podman)")

    # ── Deadlines ────────────────────────────────────────────────
    readiness_timeout_seconds: float = Field(default=30.0, gt=0)
    readiness_initial_delay: float = Field(default=0.1, gt=0)
    readiness_max_delay: float = Field(default=2.0, gt=0)
    job_timeout_seconds: float | None = Field(default=3600.0, description="None disables the job deadline")
    pull_timeout_seconds: float = Field(default=600.0, gt=0)
    remove_timeout_seconds: float = Field(default=30.0, gt=0)
    command_timeout_seconds: float = Field(default=120.0, gt=0)

    # ── Execution ────────────────────────────────────────────────
    max_parallel_jobs: int = Field(default=1, ge=1, description="Concurrent jobs within one stage")
    keep_containers: bool = Field(default=False, description="Skip container removal (debugging)")

    # ── Output ───────────────────────────────────────────────────
    color: bool = Field(default=True)
    max_line_bytes: int = Field(default=1024 * 1024, ge=1024)

    # ── Logging ──────────────────────────────────────────────────
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="WARNING")
    log_format: Literal["json", "console"] = Field(default="console")

    @field_validator("job_timeout_seconds")
    @classmethod
    def _non_positive_disables(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            return None
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, value: object) -> object:
        return value.upper() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _check_backoff(self) -> PipelineFoxSettings:
        if self.readiness_initial_delay > self.readiness_max_delay:
            raise ValueError("readiness_initial_delay must not exceed readiness_max_delay")
        return self


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: PipelineFoxSettings | None = None


def get_settings(*, _force_reload: bool = False) -> PipelineFoxSettings:
    """Load, validate, and cache settings."""
    global _settings_cache
    if _settings_cache is None or _force_reload:
        _settings_cache = PipelineFoxSettings()
    return _settings_cache


def clear_settings_cache() -> None:
    """Drop the cached settings (tests)."""
    global _settings_cache
    _settings_cache = None
