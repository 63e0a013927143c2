"""Application settings using Pydantic BaseSettings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from RECONCILIATION_* environment variables."""

    app_name: str = "Bitespeed Contact Reconciliation API"
    version: str = "1.0.0"
    environment: str = "development"
    log_level: str = "INFO"

    # SQLite
    database_path: str = "contacts.db"
    database_timeout: float = 5.0  # seconds to wait on a locked database

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = SettingsConfigDict(
        env_prefix="RECONCILIATION_",
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
