"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "Murmur"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Calendar ---
    timezone: str = "UTC"  # IANA name used for day keys and day bounds

    # --- Health data source ---
    health_source: str = "fake"  # fake | apple_health_export
    apple_health_export_path: str | None = None
    health_query_timeout_seconds: float = 10.0
    use_fallback_data: bool = False  # seeded values when the source is unavailable

    # --- Persistence ---
    database_url: str | None = None  # postgres DSN for asyncpg; in-memory store when unset
    baseline_store_path: str | None = None  # JSON file for persisted baselines

    # --- Engine config ---
    insights_config_path: str | None = None  # override for insights_config.yaml

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "MURMUR_"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
