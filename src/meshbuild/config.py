"""Run settings for meshbuild.

Settings are read once by the outer surface (CLI or caller) and passed
down explicitly; engine components never read the environment.
"""

from __future__ import annotations

from pathlib import Path
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from meshbuild.kernel.dep_cache import DepCacheMode


class MeshBuildSettings(BaseSettings):
    """Settings, overridable through MESHBUILD_* environment variables."""

    services_dir: Path = Path("services")
    dep_cache_dir: Path = Path(".dep-cache")
    dep_cache_mode: DepCacheMode = DepCacheMode.SOFT
    registry: str = ""
    latest: bool = True
    extra_tags: List[str] = []
    push: bool = False
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="MESHBUILD_", extra="ignore")

    @field_validator("registry")
    @classmethod
    def normalize_registry(cls, value: str) -> str:
        """Registry is used as an image name prefix; ensure it ends with '/'."""
        value = value.strip()
        if value and not value.endswith("/"):
            value += "/"
        return value

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level
