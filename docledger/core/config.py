"""
Configuration for the Document Integrity Ledger.

Settings are read from the environment (and an optional .env file).
Use get_settings() everywhere instead of instantiating Settings directly.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Document Integrity Ledger"
    app_version: str = "1.0.0"
    debug: bool = False

    # Security - keys the transaction integrity tags and certificate signatures
    SECRET_KEY: str = "docledger-development-secret-change-me"

    # Ledger
    ledger_difficulty: int = Field(default=2, ge=1, le=6)
    seal_on_register: bool = True
    reject_duplicate_content: bool = True

    # Verification workflow
    ocr_confidence_threshold: float = Field(default=70.0, ge=0.0, le=100.0)

    # Uploads
    max_upload_size_mb: int = 10

    # Logging
    log_level: str = "INFO"
    log_json: bool = False
    log_file: str | None = None

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
