"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (SITEINTEL__CACHE__REDIS_URL=redis://cache:6379/0)
  2. siteintel.yaml         (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional. With no backend configured the cache runs
in-process, which is what tests and one-off runs want.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from siteintel.learning import DEFAULT_QUALITY_SCHEDULE
from siteintel.navigation import DEPARTMENT_VOCABULARY
from siteintel.patterns import (
    ECOMMERCE_KEYWORDS,
    MAX_GENERIC_SELECTOR_LENGTH,
    MIN_STRATEGY_SUCCESS_RATE,
)


def _find_config_file() -> str | None:
    """Return the path of the first siteintel.yaml found, or None."""
    candidates = [
        Path("siteintel.yaml"),
        Path(platformdirs.user_config_dir("siteintel")) / "siteintel.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class CacheSettings(BaseModel):
    # Backend selection happens once at startup: redis_url wins over db_path,
    # and neither means the in-process fallback.
    redis_url: str | None = None
    db_path: str | None = None
    sweep_interval_seconds: int = 300


class NavigationSettings(BaseModel):
    ttl_days: int = 7
    max_depth: int = 3
    department_vocabulary: list[str] = Field(default_factory=lambda: list(DEPARTMENT_VOCABULARY))


class PatternSettings(BaseModel):
    learning_ttl_days: int = 30
    selector_ttl_days: int = 14
    max_generic_selector_length: int = MAX_GENERIC_SELECTOR_LENGTH
    ecommerce_keywords: list[str] = Field(default_factory=lambda: list(ECOMMERCE_KEYWORDS))
    min_strategy_success_rate: float = MIN_STRATEGY_SUCCESS_RATE


class LearningSettings(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    target_quality: float = Field(default=0.9, ge=0.0, le=1.0)
    quality_schedule: list[float] = Field(default_factory=lambda: list(DEFAULT_QUALITY_SCHEDULE))


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: SITEINTEL__LEARNING__MAX_ATTEMPTS=5
        env_prefix="SITEINTEL__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    cache: CacheSettings = CacheSettings()
    navigation: NavigationSettings = NavigationSettings()
    patterns: PatternSettings = PatternSettings()
    learning: LearningSettings = LearningSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
