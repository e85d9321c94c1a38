from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class SessionConfig(BaseSettings):
    """Configuration for durable batch state."""

    store_backend: str = "sqlite"  # sqlite, json, memory
    db_file: str = "batches.db"
    state_file: Path = Path("./batch-state.json")

    @field_validator("store_backend")
    @classmethod
    def backend_must_be_known(cls, v: str) -> str:
        allowed = {"sqlite", "json", "memory"}
        if v not in allowed:
            raise ValueError(f"store_backend must be one of {allowed}")
        return v


class LoggingConfig(BaseSettings):
    """Configuration for logging."""

    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR
    log_file_path: Optional[Path] = Path("./logs/formmaster.log")


class DetectionConfig(BaseSettings):
    """Settings for form detection and field mapping."""

    max_shadow_depth: int = 32
    visual_proximity_threshold: float = 60.0
    max_form_elements: int = 100
    rules_path: Optional[Path] = Path("mapping_rules.yaml")

    @field_validator("max_shadow_depth", "max_form_elements")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v


class RetryConfig(BaseSettings):
    """Default policy for replaying failed rows."""

    max_attempts: int = 3
    retry_delay_ms: int = 1000


class BatchSettings(BaseSettings):
    """Limits for batch execution."""

    max_concurrent_batches: int = 8

    @field_validator("max_concurrent_batches")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_concurrent_batches must be at least 1")
        return v


class AutomationConfig(BaseSettings):
    """Browser-side settings for filling and submitting forms."""

    browser_headless: bool = True
    navigation_timeout_ms: int = 30000
    typing_min_delay_ms: int = 60
    typing_max_delay_ms: int = 160
    url_key: str = "url"
    default_url: Optional[str] = None
    form_fallback_enabled: bool = True
    captcha_solver_enabled: bool = True

    @model_validator(mode="after")
    def check_typing_delays(self) -> "AutomationConfig":
        if self.typing_min_delay_ms > self.typing_max_delay_ms:
            raise ValueError(
                "typing_min_delay_ms must not exceed typing_max_delay_ms"
            )
        return self


class BotModeConfig(BaseSettings):
    """Configuration for the operating mode."""

    mode: str = Field("batch", validation_alias="BOT_MODE")
    valid_modes: List[str] = ["detect", "batch", "retry"]

    @model_validator(mode="after")
    def check_valid_mode(self) -> "BotModeConfig":
        if self.mode not in self.valid_modes:
            raise ValueError(
                f"Invalid BOT_MODE: {self.mode}. Must be one of {self.valid_modes}"
            )
        return self


class AppConfig(BaseSettings):
    """Root configuration class for the application."""

    session: SessionConfig = SessionConfig()
    logging: LoggingConfig = LoggingConfig()
    detection: DetectionConfig = DetectionConfig()
    retry: RetryConfig = RetryConfig()
    batch: BatchSettings = BatchSettings()
    automation: AutomationConfig = AutomationConfig()
    # BOT_MODE is read by BotModeConfig; the alias keeps it from being parsed as this section
    bot_mode: BotModeConfig = Field(default_factory=BotModeConfig, validation_alias="BOT_MODE_CONFIG")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        env_file_encoding="utf-8",
        extra="ignore",
    )


# Instantiate the main config object
config = AppConfig()
