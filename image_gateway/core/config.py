"""
Configuration management using Pydantic Settings.

All configuration values are loaded from environment variables
with sensible defaults where appropriate. Settings are read once
at startup and are never reloaded while the process runs.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# The .env file lives next to the package directory
ROOT_DIR = Path(__file__).resolve().parent.parent.parent
ENV_FILE = ROOT_DIR / ".env"

# Load .env into environment for nested settings models
load_dotenv(ENV_FILE)


class AppSettings(BaseSettings):
    """Application-level configuration."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: Literal["development", "staging", "production"] = "production"
    app_name: str = "image-playground-gateway"
    app_version: str = "1.0.0"
    app_debug: bool = False

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # CORS
    cors_origins: str = "http://localhost:3000"
    cors_credentials: bool = True

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_development(self) -> bool:
        """Rate limiting is switched off in development."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


class RateLimitSettings(BaseSettings):
    """Rate limiting configuration."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_prefix="RATE_LIMIT_",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Per-client generation quota
    hourly: int = Field(default=10, ge=0)
    daily: int = Field(default=40, ge=0)
    hourly_window: int = Field(default=3600, gt=0)  # seconds
    daily_window: int = Field(default=86400, gt=0)  # seconds

    # Coarse limit across all gateway API traffic
    api: int = Field(default=200, ge=0)
    api_window: int = Field(default=3600, gt=0)  # seconds

    # Housekeeping
    sweep_interval: int = Field(default=3600, gt=0)  # seconds


class SecuritySettings(BaseSettings):
    """Outbound request safety configuration."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_prefix="",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Format: "https://cdn.example.com,https://images.example.org"
    allowed_image_domains: str = ""
    ssrf_resolve_dns: bool = True
    image_fetch_max_bytes: int = 20 * 1024 * 1024
    image_fetch_timeout: int = 30  # seconds
    image_max_pixels: int = Field(default=40_000_000, gt=0)

    @property
    def allowed_image_domains_list(self) -> list[str]:
        """Parse allowed image origins into a list."""
        return [d.strip() for d in self.allowed_image_domains.split(",") if d.strip()]


class FalSettings(BaseSettings):
    """fal.ai upstream provider configuration."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_prefix="FAL_",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    key: str = ""
    run_url: str = "https://fal.run"
    rest_url: str = "https://rest.alpha.fal.ai"
    timeout: int = Field(default=100, gt=0)  # wall-clock budget per call, seconds


class LogSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_prefix="LOG_",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    level: str = "INFO"
    format: Literal["json", "text"] = "json"
    requests: bool = True


class Settings(BaseSettings):
    """Main settings class that aggregates all configuration sections."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app: AppSettings = Field(default_factory=AppSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    fal: FalSettings = Field(default_factory=FalSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    # DOCS
    docs_enabled: bool = True
    dev_auto_reload: bool = True


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
