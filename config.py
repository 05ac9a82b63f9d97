"""
Configuration management for CareCadence
"""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "CareCadence"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENV: str = "development"

    # API
    API_PREFIX: str = "/api/v1"
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str = "sqlite:///./carecadence.db"
    DATABASE_ECHO: bool = False

    # Scheduling engine
    MISSED_GRACE_MINUTES: int = 120
    ON_TIME_TOLERANCE_MINUTES: int = 30
    NOW_WINDOW_MINUTES: int = 15
    DUE_SOON_MINUTES: int = 120
    GENERATION_WINDOW_DAYS: int = 7
    PRN_GUARD_HOURS: int = 24

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


class SchedulingConfig:
    """Closed sets and defaults shared by the scheduling engine"""

    # Time-of-day buckets: name, display label, anchor time
    DEFAULT_TIME_BUCKETS: list[dict] = [
        {"name": "morning", "label": "Morning", "default_time": "08:00"},
        {"name": "lunch", "label": "Lunch", "default_time": "12:00"},
        {"name": "evening", "label": "Evening", "default_time": "18:00"},
        {"name": "before_bed", "label": "Before Bed", "default_time": "22:00"},
    ]

    SKIP_REASONS: list[str] = [
        "forgot", "felt_sick", "ran_out", "side_effects", "other"
    ]

    PRN_REASONS: list[str] = [
        "pain", "headache", "nausea", "anxiety", "insomnia", "fever", "other"
    ]

    SNOOZE_PRESETS_MINUTES: list[int] = [10, 30, 60, 120, 240]

    # Risk bands on adherence percentage, lower bound inclusive
    RISK_LOW_THRESHOLD: float = 90.0
    RISK_MEDIUM_THRESHOLD: float = 80.0
    RISK_HIGH_THRESHOLD: float = 70.0

    SYSTEM_ACTOR: str = "system"


# Database table names
class TableNames:
    PATIENTS = "patients"
    MEDICATIONS = "medications"
    MEDICATION_SCHEDULES = "medication_schedules"
    MEDICATION_CALENDAR_EVENTS = "medication_calendar_events"
    MEDICATION_STATUS_CHANGES = "medication_status_changes"
    PRN_DOSE_LOGS = "prn_dose_logs"


settings = get_settings()
scheduling_config = SchedulingConfig()
