"""
Application Configuration

Centralized settings management using Pydantic Settings.
Supports environment variables and .env files.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path
from typing import Optional


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ==========================================================================
    # App Settings
    # ==========================================================================
    APP_NAME: str = "Product Background Generator"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, PROD

    # ==========================================================================
    # Provider Settings (Runware inference API)
    # ==========================================================================
    RUNWARE_API_URL: str = "https://api.runware.ai/v1"
    RUNWARE_API_KEY: Optional[str] = None
    PROVIDER_TIMEOUT_SECONDS: float = 120.0

    # Development switch: no network calls, deterministic fake results
    USE_SIMULATED_PROVIDER: bool = False
    SIMULATED_LATENCY_SECONDS: float = 0.0

    # ==========================================================================
    # Workflow Settings
    # ==========================================================================
    MAX_RETRIES: int = 3
    RETRY_DELAY_MS: int = 2000  # Fixed delay, not exponential
    DEFAULT_SEED: int = 206554476

    # Optional JSON file replacing the built-in catalogs
    CATALOG_PATH: Optional[Path] = None

    # ==========================================================================
    # Storage Settings
    # ==========================================================================
    LOCAL_STORAGE_PATH: str = "./data/workflows"
    PERSIST_WORKFLOWS: bool = True

    # ==========================================================================
    # Logging Settings
    # ==========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT_JSON: bool = True  # JSON for production, console for development

    @property
    def retry_delay_seconds(self) -> float:
        return self.RETRY_DELAY_MS / 1000.0


# Global settings instance
settings = Settings()
