# compliance_engine/config.py
"""Application settings loaded from environment."""

import os
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class Settings(BaseSettings):
    """Engine and API settings. Every field can be overridden with COMPLIANCE_<NAME>."""

    model_config = SettingsConfigDict(
        env_prefix="COMPLIANCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "Visa Compliance Engine"

    # Rules
    rules_dir: str = os.path.join(BASE_DIR, "rulesets")
    enable_dependencies: bool = True
    enable_university_overrides: bool = True

    # Dates
    timezone: str = "America/New_York"
    default_due_offset_days: int = 7

    # Orchestration
    max_tasks_per_user: int = 50
    enable_fallback: bool = True
    fill_with_baseline: bool = False
    enable_caching: bool = True
    cache_ttl_minutes: int = 10
    enhancer_timeout_seconds: float = 5.0
    enhancer_max_workers: int = 1

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
