"""Application settings.

WHAT:
    Single pydantic-settings model for every knob the service reads from the
    environment (database, CORS, JWT, sheet fetching, telemetry).

WHY:
    - One cached instance per process (`get_settings`), so the database engine
      and the sheet fetcher are always built from the same configuration.
    - Tests override values through environment variables before import.

REFERENCES:
    - funnelboard/database.py (DATABASE_URL consumer)
    - funnelboard/services/sheet_fetcher.py (timeout consumer)
    - funnelboard/security.py (JWT consumer)
"""

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .utils.env import load_env_file


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    DATABASE_URL: str = "sqlite:///./funnelboard.db"
    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"
    ENVIRONMENT: str = "development"

    # Session identity (JWT issued by the auth provider in front of us)
    JWT_SECRET: str = "change-me-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRES_MINUTES: int = 10080

    # Public API keys
    API_KEY_PREFIX: str = "fb_"

    # Google Sheets ingestion
    SHEET_FETCH_TIMEOUT_SECONDS: float = 30.0

    # CRM defaults
    DEFAULT_STAGE_COLOR: str = "#19069E"

    # Telemetry
    SENTRY_DSN: Optional[str] = None

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.BACKEND_CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    load_env_file()
    return Settings()  # type: ignore[call-arg]
