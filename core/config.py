"""
Centralized configuration management.
All environment variables and settings are defined here.
"""
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_name: str = Field(default="Transaction Auto-Categorizer", alias="APP_NAME")
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Classifier (Anthropic Messages API)
    classifier_api_key: str = Field(default="", alias="CLASSIFIER_API_KEY")
    classifier_base_url: str = Field(default="https://api.anthropic.com", alias="CLASSIFIER_BASE_URL")
    classifier_model: str = Field(default="claude-3-5-sonnet-20241022", alias="CLASSIFIER_MODEL")
    classifier_timeout: int = Field(default=30, alias="CLASSIFIER_TIMEOUT")
    classifier_cost_per_call: float = Field(default=0.003, alias="CLASSIFIER_COST_PER_CALL")
    classifier_daily_limit: int = Field(default=500, alias="CLASSIFIER_DAILY_LIMIT")
    classifier_monthly_limit: int = Field(default=10000, alias="CLASSIFIER_MONTHLY_LIMIT")
    classifier_cost_limit: float = Field(default=25.0, alias="CLASSIFIER_COST_LIMIT")

    # Ledger (YNAB-style budgeting API)
    ledger_api_key: str = Field(default="", alias="LEDGER_API_KEY")
    ledger_budget_id: str = Field(default="", alias="LEDGER_BUDGET_ID")
    ledger_base_url: str = Field(default="https://api.ynab.com/v1", alias="LEDGER_BASE_URL")
    ledger_timeout: int = Field(default=30, alias="LEDGER_TIMEOUT")
    ledger_hourly_limit: int = Field(default=200, alias="LEDGER_HOURLY_LIMIT")
    ledger_daily_limit: int = Field(default=2000, alias="LEDGER_DAILY_LIMIT")
    ledger_monthly_limit: int = Field(default=40000, alias="LEDGER_MONTHLY_LIMIT")

    # Notifications (Telegram)
    telegram_bot_token: str = Field(default="", alias="TELEGRAM_BOT_TOKEN")
    telegram_chat_id: str = Field(default="", alias="TELEGRAM_CHAT_ID")
    telegram_timeout: int = Field(default=15, alias="TELEGRAM_TIMEOUT")

    # Decision policy (0-1 scale)
    auto_approve_threshold: float = Field(default=0.95, alias="AUTO_APPROVE_THRESHOLD")
    history_confidence_threshold: float = Field(default=0.90, alias="HISTORY_CONFIDENCE_THRESHOLD")
    history_min_count: int = Field(default=3, alias="HISTORY_MIN_COUNT")

    # Processing
    since_days: int = Field(default=7, alias="SINCE_DAYS")
    max_attempts: int = Field(default=3, alias="MAX_ATTEMPTS")

    # Storage
    database_path: str = Field(default="data/merchant_data.db", alias="DATABASE_PATH")
    usage_file: str = Field(default="data/api-usage.json", alias="USAGE_FILE")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level is one of the standard levels."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v_upper

    @field_validator("port")
    @classmethod
    def validate_port(cls, v):
        """Validate port is in valid range."""
        if not (1 <= v <= 65535):
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator("auto_approve_threshold", "history_confidence_threshold")
    @classmethod
    def validate_threshold(cls, v):
        """Thresholds are on the 0-1 confidence scale."""
        if not (0.0 <= v <= 1.0):
            raise ValueError("Confidence thresholds must be between 0 and 1")
        return v

    @field_validator(
        "history_min_count",
        "max_attempts",
        "since_days",
        "ledger_hourly_limit",
        "classifier_daily_limit",
        "classifier_monthly_limit",
        "ledger_daily_limit",
        "ledger_monthly_limit",
    )
    @classmethod
    def validate_positive(cls, v):
        """Counts and limits must be at least 1."""
        if v < 1:
            raise ValueError("Value must be at least 1")
        if v > 1_000_000:
            raise ValueError("Value should not exceed 1,000,000")
        return v

    @field_validator("classifier_cost_limit", "classifier_cost_per_call")
    @classmethod
    def validate_cost(cls, v):
        """Costs cannot be negative."""
        if v < 0:
            raise ValueError("Cost values cannot be negative")
        return v

    def ensure_directories(self) -> None:
        """Ensure directories for the database and usage file exist."""
        for path in (self.database_path, self.usage_file):
            Path(path).parent.mkdir(parents=True, exist_ok=True)


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get application settings singleton.

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
        _settings.ensure_directories()
    return _settings


def reset_settings() -> None:
    """Reset settings singleton (useful for testing)."""
    global _settings
    _settings = None
