import os
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):

    port: int = 8000
    environment: str = "development"

    postgres_user: str = os.getenv("POSTGRES_USER", "user")
    postgres_password: str = os.getenv("POSTGRES_PASSWORD", "password")
    postgres_db: str = os.getenv("POSTGRES_DB", "exam_engine_db")
    postgres_host: str = os.getenv("POSTGRES_HOST", "db")
    postgres_port: int = 5432

    # Overrides the assembled PostgreSQL URL (sqlite:// for local runs)
    database_uri: Optional[str] = None

    @property
    def database_url(self) -> str:
        if self.database_uri:
            return self.database_uri
        return f"postgresql://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    cors_origins_str: str = "http://localhost:3000,http://localhost:5173"

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins_str.split(",")]

    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    cache_enabled: bool = True
    cache_default_ttl: int = 600
    question_order_cache_ttl: int = 6 * 3600
    notification_channel_prefix: str = "exam_engine"

    slow_request_threshold: float = 1.0

    celery_broker_url: str = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
    celery_result_backend: str = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/0")
    expiry_sweep_interval_seconds: float = 60.0

    # Join policy; the class-level check has been switched on and off over time
    require_class_level_match: bool = True

    # Timer bands, as fractions of the exam duration
    timer_caution_fraction: float = 0.20
    timer_warning_fraction: float = 0.05

    # Violation escalation
    flag_on_critical: bool = True
    high_severity_flag_count: int = 2
    any_severity_flag_count: int = 4
    warn_student_count: int = 2

    # Heuristic credit for subjective answers
    subjective_min_length: int = 10
    subjective_credit_fraction: float = 0.5

    default_timezone: str = "UTC"
    timezone_display_format: str = "%d.%m.%Y, %H:%M:%S"

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
