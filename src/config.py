"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "Cadence"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Activity cache ---
    cache_dir: str = ".cadence-cache"
    memory_cache_count_limit: int = 500

    # --- Visibility ---
    show_step_count: bool = True

    # --- Providers ---
    provider_auth_timeout_seconds: float = 10.0
    # provider name → canonical JSON feed URL, e.g. {"garmin": "https://..."}
    feed_urls: dict[str, str] = {}
    feed_tokens: dict[str, str] = {}
    load_on_startup: bool = True

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
