"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the API and the worker.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Database Configuration
    # DATABASE_URL wins when set (e.g. "sqlite://" for local runs).
    DATABASE_URL: Optional[str] = Field(default=None)
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: str = Field(default="postgres")
    POSTGRES_DB: str = Field(default="modpanel")
    POSTGRES_HOST: str = Field(default="postgres")
    POSTGRES_PORT: int = Field(default=5432)

    # Database Pool Configuration
    DB_POOL_SIZE: int = Field(default=20)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # Redis Configuration
    REDIS_URL: str = Field(default="redis://redis:6379/0")

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = Field(default=True)

    # Celery Configuration
    CELERY_BROKER_URL: str = Field(default="redis://redis:6379/0")
    CELERY_RESULT_BACKEND: str = Field(default="redis://redis:6379/0")

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # CORS - comma-separated list of allowed origins for production
    CORS_ORIGINS: Optional[str] = Field(default=None)

    # Migration uploads are written under <UPLOADS_DIR>/migrations/ and removed after processing.
    UPLOADS_DIR: str = Field(default="uploads")

    # Default upload ceiling; a tenant row may carry its own limit.
    MIGRATION_FILE_SIZE_LIMIT_BYTES: int = Field(default=5 * 1024 * 1024 * 1024)  # 5 GiB
    MIGRATION_BATCH_SIZE: int = Field(default=500, ge=1, le=10000)
    MIGRATION_PROGRESS_INTERVAL: int = Field(default=1000, ge=1)
    MIGRATION_COOLDOWN_HOURS: int = Field(default=24, ge=0)
    MIGRATION_HISTORY_LIMIT: int = Field(default=10, ge=1)
    MIGRATION_UPLOAD_ATTEMPTS_PER_HOUR: int = Field(default=3, ge=1)

    # Secure parser caps (applied before any record is looked at)
    IMPORT_MAX_JSON_BYTES: int = Field(default=2 * 1024 * 1024 * 1024)  # 2 GiB
    IMPORT_MAX_ARRAY_LENGTH: int = Field(default=1_000_000)
    IMPORT_MAX_STRING_LENGTH: int = Field(default=10_000)
    IMPORT_MAX_NESTING_DEPTH: int = Field(default=20)


# Global settings instance
settings = Settings()
