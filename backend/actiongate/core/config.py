"""Application configuration managed via environment variables."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "ActionGate"
    debug: bool = False
    log_level: str = "INFO"
    database_url: str = "postgresql+psycopg2://actiongate@localhost:5432/actiongate"
    opik_enabled: bool = False
    opik_api_key: str | None = None
    opik_project: str = "actiongate"
    scheduler_enabled: bool = False
    scheduler_timezone: str = "UTC"
    expiry_sweep_minutes: int = 1
    expiry_sweep_batch: int = 500
    card_ttl_hours: int = 72
    dispatch_provider: str = "noop"


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()


settings = get_settings()
