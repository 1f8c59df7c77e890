"""Pydantic configuration models for Dictate."""

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator


def _expand_env(value: Optional[str]) -> Optional[str]:
    """Resolve a "${VAR}" placeholder from the environment."""
    if value and value.startswith("${") and value.endswith("}"):
        return os.getenv(value[2:-1], "")
    return value


class PathsConfig(BaseModel):
    """File paths configuration."""

    db_path: Path = Path("~/.dictate/learning.db")
    export_dir: Path = Path("~/.dictate/exports")
    log_file: Path = Path("~/.dictate/dictate.log")

    @model_validator(mode="after")
    def expand_paths(self):
        """Expand ~ in all paths."""
        self.db_path = self.db_path.expanduser()
        self.export_dir = self.export_dir.expanduser()
        self.log_file = self.log_file.expanduser()
        return self


class LearningConfig(BaseModel):
    """Pattern/preference learning and review cadence."""

    enabled: bool = True
    initial_confidence: float = Field(default=0.3, ge=0.0, le=1.0)
    reinforcement_step: float = Field(default=0.2, gt=0.0, le=1.0)
    mode_bonus: float = Field(default=0.1, ge=0.0, le=1.0)
    apply_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    max_phrase_words: int = Field(default=4, ge=1)
    preference_alpha: float = Field(default=0.1, gt=0.0, le=1.0)
    choice_weight: float = Field(default=0.5, gt=0.0, le=1.0)
    preference_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    min_review_words: int = Field(default=20, ge=1)
    onboarding_sessions: int = Field(default=10, ge=0)
    review_probability: float = Field(default=0.2, ge=0.0, le=1.0)
    ab_test_session_cap: int = Field(default=50, ge=0)
    review_timeout_seconds: float = Field(default=120.0, gt=0)


class SyncConfig(BaseModel):
    """Remote replica (Supabase) configuration."""

    enabled: bool = True
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    access_token: Optional[str] = None
    user_id: Optional[str] = None
    interval_seconds: float = Field(default=30.0, gt=0)
    request_timeout: float = Field(default=5.0, gt=0)
    max_attempts: int = Field(default=5, ge=1)
    backoff_base_seconds: float = Field(default=5.0, ge=0)
    backoff_max_seconds: float = Field(default=300.0, ge=0)

    @field_validator("supabase_url")
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        if v and not v.startswith(("http://", "https://")):
            raise ValueError(f"supabase_url must be an http(s) URL, got: {v}")
        return v.rstrip("/") if v else v

    @property
    def has_credentials(self) -> bool:
        return bool(self.enabled and self.supabase_url and self.supabase_key and self.user_id)


class RetryConfig(BaseModel):
    """Per-request retry/backoff configuration."""

    max_attempts: int = Field(default=2, ge=1)
    min_wait: float = 0.5
    max_wait: float = 2.0


VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    file_level: str = "DEBUG"
    json_format: bool = False

    @field_validator("level", "file_level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        v_upper = v.upper()
        if v_upper not in VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log level: {v}. Must be one of {VALID_LOG_LEVELS}")
        return v_upper


class AppConfig(BaseModel):
    """Main configuration model."""

    paths: PathsConfig = Field(default_factory=PathsConfig)
    learning: LearningConfig = Field(default_factory=LearningConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def expand_env_vars(self):
        """Expand ${VAR} patterns in credentials."""
        self.sync.supabase_key = _expand_env(self.sync.supabase_key)
        self.sync.access_token = _expand_env(self.sync.access_token)
        self.sync.user_id = _expand_env(self.sync.user_id)
        return self

    @classmethod
    def from_dict(cls, data: dict) -> "AppConfig":
        """Create config from a parsed YAML dict."""
        return cls.model_validate(data)
