"""Application settings loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Approval Tracker API"
    debug: bool = False
    api_prefix: str = "/api"

    # Database
    database_url: str = "sqlite:///./approvals.db"
    database_echo: bool = False

    # Logging
    log_level: str = "INFO"
    log_format: str = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"

    # Object storage keys for uploaded documents
    storage_key_prefix: str = "documents"

    model_config = SettingsConfigDict(
        env_prefix="APPROVALS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
