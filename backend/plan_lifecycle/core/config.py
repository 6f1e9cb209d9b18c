"""Application configuration managed via environment variables."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Integral Plan Lifecycle"
    debug: bool = False
    log_level: str = "INFO"
    database_url: str = "postgresql+psycopg2://integral@localhost:5432/integral_plans"
    opik_enabled: bool = False
    opik_api_key: str | None = None
    opik_project: str = "integral-plans"
    openai_model: str = "gpt-4o"
    plan_generation_enabled: bool = True
    strict_migrations: bool = True
    feedback_write_retries: int = 3
    calendar_prodid: str = "-//AuraOS//IntegralBodyArchitect//EN"
    calendar_uid_domain: str = "aura-os"
    plan_timezone: str = "UTC"
    scheduler_enabled: bool = False
    scheduler_timezone: str = "UTC"
    maintenance_job_day: int = 0
    maintenance_job_hour: int = 3
    maintenance_job_minute: int = 0
    jobs_run_on_startup: bool = False


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()


settings = get_settings()
