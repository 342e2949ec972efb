"""
Configuration management using Pydantic Settings.
Reads from environment variables.
"""

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine settings."""

    model_config = ConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    # Application Configuration
    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Balance ledger
    ledger_max_retries: int = Field(default=5, alias="LEDGER_MAX_RETRIES")
    balance_low_threshold: float = Field(default=2.0, alias="BALANCE_LOW_THRESHOLD")

    # Eligibility and accrual
    probation_months: int = Field(default=6, alias="PROBATION_MONTHS")
    mid_month_cutoff_day: int = Field(default=15, alias="MID_MONTH_CUTOFF_DAY")

    # Comp-off reminders (days before expiry)
    comp_off_reminder_days: list[int] = Field(
        default_factory=lambda: [30, 14, 7, 3, 1], alias="COMP_OFF_REMINDER_DAYS"
    )

    # Circuit Breaker Configuration (repository calls)
    circuit_breaker_failure_threshold: int = Field(
        default=5, alias="CIRCUIT_BREAKER_FAILURE_THRESHOLD"
    )
    circuit_breaker_timeout: int = Field(default=60, alias="CIRCUIT_BREAKER_TIMEOUT")


# Global settings instance
settings = Settings()
