"""
Application configuration using Pydantic Settings.
All environment variables are loaded here with sensible defaults.
"""
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional

MIB = 1024 * 1024


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Listener
    host: str = "0.0.0.0"
    http_port: int = 8080
    metrics_port: int = 9090  # 0 disables the Prometheus endpoint

    # Uploads
    max_upload_size: int = 5 * MIB
    upload_timeout: float = 10.0  # Per-request deadline, also the drain window
    request_timeout: float = 11.0  # Listener idle timeout, must exceed upload_timeout

    # S3
    uploader_cache_size: int = 25
    default_s3_region: str = "eu-central-1"  # Used when a bucket's region can't be determined
    s3_endpoint_url: Optional[str] = None  # e.g. http://localhost:9000 for S3-compatible stores

    # Environment
    environment: str = "dev"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @model_validator(mode="after")
    def check_limits(self) -> "Settings":
        """Reject combinations the relay cannot honour."""
        if self.max_upload_size <= 0:
            raise ValueError("max_upload_size must be positive")
        if self.uploader_cache_size < 1:
            raise ValueError("uploader_cache_size must be at least 1")
        if self.upload_timeout <= 0:
            raise ValueError("upload_timeout must be positive")
        # The per-request timeout must fire before the listener's idle timeout
        if self.request_timeout <= self.upload_timeout:
            raise ValueError("request_timeout must be greater than upload_timeout")
        return self


# Global settings instance
settings = Settings()
