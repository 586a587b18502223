"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class StorageBackend(str, Enum):
    memory = "memory"
    redis = "redis"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # Connection persistence
    CRM_STORAGE_BACKEND: StorageBackend = StorageBackend.memory
    REDIS_URL: str = "redis://localhost:6379/0"

    # CORS
    CORS_ALLOWED_ORIGINS: str = "*"

    # Airtable (also drives the bootstrap connection)
    AIRTABLE_API_KEY: str = ""
    AIRTABLE_BASE_ID: str = ""
    AIRTABLE_API_URL: str = "https://api.airtable.com"

    # Salesforce
    SALESFORCE_API_VERSION: str = "v57.0"

    # Outbound request shaping, shared by every provider client
    CRM_MIN_REQUEST_INTERVAL_MS: int = 200  # 5 req/s
    CRM_RETRY_ATTEMPTS: int = 3
    CRM_RETRY_BASE_DELAY: float = 1.0
    CRM_HTTP_TIMEOUT: float = 30.0

    def has_airtable_bootstrap(self) -> bool:
        """Return True when both Airtable bootstrap values are configured."""
        return bool(self.AIRTABLE_API_KEY and self.AIRTABLE_BASE_ID)


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
