"""
Configuration and settings for the marketplace backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    log_level: str = Field(default="INFO")

    # Storage backend selection
    use_memory_db: bool = Field(
        default=False, description="Force the in-memory backend"
    )
    use_mongodb: bool = Field(default=False, description="Use the MongoDB backend")
    use_mongodb_memory_server: bool = Field(
        default=False, description="Start an embedded, throwaway mongod"
    )
    use_postgres: bool = Field(
        default=False, description="Use the relational backend (needs DATABASE_URL)"
    )

    # MongoDB
    mongodb_uri: Optional[str] = Field(default=None)
    mongodb_database: str = Field(default="workhub")
    mongodb_server_selection_timeout_ms: int = Field(default=2000, ge=1)

    # Relational (SQLAlchemy async URL, e.g. postgresql+asyncpg://...)
    database_url: Optional[str] = Field(default=None)

    # Uploads: local directory unless an S3-compatible bucket is configured
    upload_dir: str = Field(default="uploads")
    upload_base_url: str = Field(default="/uploads")
    s3_bucket: Optional[str] = Field(default=None)
    s3_region: Optional[str] = Field(default=None)
    s3_endpoint: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
