"""
Configuration management for DoseReminder
"""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "DoseReminder"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENV: str = "development"

    # API
    API_PREFIX: str = "/api/v1"
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str = "sqlite:///./dose_reminder.db"
    DATABASE_ECHO: bool = False

    # Operating timezone for start times and treatment calendar days
    TIMEZONE: str = "America/Sao_Paulo"

    # Scheduler
    SCHEDULER_ENABLED: bool = True
    NOTIFICATION_INTERVAL_SECONDS: int = 60
    DUE_TOLERANCE_MINUTES: int = 2
    REPLENISH_LOW_WATER: int = 10
    SCHEDULE_HORIZON_DAYS: int = 7
    SCHEDULE_RETENTION_DAYS: int = 30
    LOG_RETENTION_DAYS: int = 90
    CLEANUP_HOUR: int = 2

    # Outbound email
    SMTP_TIMEOUT_SECONDS: float = 15.0
    EMAIL_FROM_NAME: str = "DoseReminder"

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Validation bounds for medication schedules
class ScheduleLimits:
    """Bounds enforced on recurrence rules and treatment durations"""

    MIN_FREQUENCY_HOURS: float = 0.5
    MAX_FREQUENCY_HOURS: float = 8760.0  # one year

    MIN_DURATION_DAYS: int = 1
    MAX_DURATION_DAYS: int = 365

    BACKFILL_MAX_AGE_DAYS: int = 365

    STATS_DEFAULT_WINDOW_DAYS: int = 30


# Database table names
class TableNames:
    USERS = "users"
    MEDICATIONS = "medications"
    SCHEDULES = "medication_schedules"
    NOTIFICATION_LOGS = "notification_logs"
    NOTIFICATION_CONFIGS = "user_settings"


settings = get_settings()
schedule_limits = ScheduleLimits()
