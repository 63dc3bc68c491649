"""Process settings for agrb.

All settings are prefixed with ``AGRB_``.  User preferences (conflict
strategy, autostash, ...) live in TOML files handled by
:mod:`agrb.cli.config`; these settings only locate those files and the
tools agrb runs.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class AgrbSettings(BaseSettings):
    """Runtime configuration loaded from ``AGRB_*`` environment variables."""

    # Directory holding the global config.toml
    config_dir: Path = Path.home() / ".config" / "agrb"
    git_binary: str = "git"
    remote_name: str = "origin"
    log_level: str = "WARNING"
    # Skips the upward search for .git; used by tests and wrappers
    repo_root: Optional[Path] = None

    model_config = SettingsConfigDict(env_prefix="AGRB_")


@lru_cache()
def get_settings() -> AgrbSettings:
    """Get cached settings instance."""
    return AgrbSettings()
