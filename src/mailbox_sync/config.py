"""Configuration management for Mailbox Sync.

This module handles application configuration using Pydantic settings.
Configuration can be loaded from environment variables or .env files.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with
    the MAILBOX_SYNC_ prefix (e.g., MAILBOX_SYNC_PAGE_SIZE).
    """

    model_config = SettingsConfigDict(
        env_prefix="MAILBOX_SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Folder sync
    page_size: int = Field(
        default=20,
        ge=1,
        description="Number of messages requested per folder page",
    )
    debounce_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Quiet period before a burst of identical folder requests executes",
    )
    remote_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Upper bound for a single call to the remote mailbox provider",
    )
    provider_name: str = Field(
        default="gmail",
        description="Provider name passed to the credential resolver",
    )

    # Enrichment
    enrichment_workers: int = Field(
        default=3,
        ge=1,
        description="Maximum number of enrichment jobs running concurrently",
    )
    enrichment_timeout_seconds: float = Field(
        default=120.0,
        gt=0.0,
        description="Upper bound for a single enrichment call",
    )
    enrichment_schema_version: str = Field(
        default="1.0",
        description="Version stamped onto every enrichment result",
    )

    # Focus folders
    sender_match_policy: Literal["substring", "exact"] = Field(
        default="substring",
        description="How sender focus rules compare against the sender address",
    )

    # Ollama Configuration
    ollama_host: str = Field(
        default="http://localhost:11434",
        description="Ollama API host URL",
    )
    ollama_model: str = Field(
        default="llama3.1:8b",
        description="Ollama model used for enrichment",
    )

    # Gmail Configuration
    gmail_token_path: Path = Field(
        default=Path("token.json"),
        description="Path to an authorized-user Gmail token file",
    )
    gmail_user_id: str = Field(
        default="me",
        description="Gmail API user id",
    )

    # Local store
    store_db_path: Path = Field(
        default=Path("mailbox_sync.sqlite3"),
        description="Path to the SQLite document store",
    )

    # Application Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
