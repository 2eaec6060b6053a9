"""
PacketGlobe Configuration Module

Centralized configuration management using pydantic-settings.
Loads settings from environment variables and .env files.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Find the project root (where .env is located)
_PROJECT_ROOT = Path(__file__).parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE) if _ENV_FILE.exists() else ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Server Configuration
    # ==========================================================================
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")

    # ==========================================================================
    # Intelligence Providers
    # ==========================================================================
    abstractapi_api_key: str = Field(
        default="",
        description="Abstract IP Intelligence API key (primary provider)",
    )
    abstractapi_url: str = Field(
        default="https://ip-intelligence.abstractapi.com/v1/",
        description="Abstract IP Intelligence endpoint",
    )
    ipapi_url: str = Field(
        default="https://ipapi.co",
        description="ipapi.co base URL (fallback provider)",
    )
    ipapi_api_key: str = Field(
        default="",
        description="Optional ipapi.co key for the paid tier",
    )
    provider_timeout: float = Field(
        default=10.0,
        description="Timeout for a single provider request (seconds)",
    )
    request_delay_seconds: float = Field(
        default=0.1,
        description="Fixed delay between intelligence requests (seconds)",
    )

    # ==========================================================================
    # Intelligence Cache
    # ==========================================================================
    cache_path: Path = Field(
        default=Path.home() / ".packetglobe" / "ip_intelligence.db",
        description="SQLite file holding the IP intelligence cache",
    )
    cache_flush_interval: int = Field(
        default=10,
        description="Number of cache writes between flushes to disk",
    )

    # ==========================================================================
    # Decoder Configuration
    # ==========================================================================
    decoder_yield_interval: int = Field(
        default=50,
        description="Blocks decoded between cooperative yields to the event loop",
    )
    max_block_length: int = Field(
        default=1_000_000,
        description="Largest block length accepted before the file is rejected",
    )
    max_upload_size: int = Field(
        default=512 * 1024 * 1024,  # 512MB
        description="Maximum file size for uploads (bytes)",
    )

    # ==========================================================================
    # Logging Configuration
    # ==========================================================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "console"] = Field(
        default="json",
        description="Log output format",
    )

    # ==========================================================================
    # Paths
    # ==========================================================================
    temp_dir: Path = Field(
        default=Path("/tmp/packetglobe"),
        description="Temporary directory for intermediate files",
    )

    @field_validator("temp_dir", "cache_path", mode="before")
    @classmethod
    def ensure_path(cls, v: str | Path) -> Path:
        """Ensure path settings are Path objects."""
        return Path(v).expanduser() if isinstance(v, str) else v

    # ==========================================================================
    # Computed Properties
    # ==========================================================================
    @property
    def has_abstractapi(self) -> bool:
        """Check if the Abstract API key is configured."""
        return bool(self.abstractapi_api_key)

    def ensure_temp_dir(self) -> Path:
        """Create temp directory if it doesn't exist."""
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        return self.temp_dir


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()


# Convenience alias
settings = get_settings()
