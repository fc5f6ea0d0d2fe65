"""Configuration for the document store."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreSettings(BaseSettings):
    """Store settings, read from DOCSTORE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="DOCSTORE_",
        case_sensitive=False,
    )

    root_dir: Path = Field(default_factory=Path.cwd, description="Directory holding <collection>.log files")
    fsync: bool = Field(default=True, description="fsync after every append and compaction")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="WARNING", description="Log level"
    )
    log_format: Literal["json", "console"] = Field(default="console", description="Log format")


@lru_cache
def get_settings() -> StoreSettings:
    """Get the process-wide settings read from the environment."""
    return StoreSettings()
