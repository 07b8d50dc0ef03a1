"""
Application configuration using Pydantic Settings.
All environment variables are loaded here with sensible defaults.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional

MIB = 1024 * 1024


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Environment
    environment: str = "dev"
    log_level: str = "INFO"

    # Admin panel / upload API shared secret
    # Every gated request is refused while this is unset
    admin_password: Optional[str] = None

    # Cloudflare R2 / S3-compatible storage
    r2_account_id: Optional[str] = None
    r2_endpoint: Optional[str] = None  # Overrides the account-derived endpoint
    r2_bucket_name: str = "uploads"
    r2_access_key_id: Optional[str] = None
    r2_secret_access_key: Optional[str] = None
    r2_region: str = "auto"  # R2 uses "auto" for region

    # Base URL used in links returned after an upload, e.g. https://files.example.com
    # Falls back to the origin of the upload request
    public_base_url: Optional[str] = None

    # Object metadata written at upload time
    default_content_type: str = "video/mp4"
    content_disposition_type: str = "attachment"  # "attachment" or "inline"
    cache_control: str = "public, max-age=31536000, immutable"
    max_key_length: int = 1024

    # Multi-part upload tuning
    upload_part_size: int = 20 * MIB
    upload_queue_size: int = 4  # Parts in flight per upload

    # Retrieval
    retrieval_mode: str = "stream"  # "stream" or "redirect"
    signed_url_expiration: int = 3600

    # Remote source fetch timeouts (seconds)
    remote_connect_timeout: float = 10.0
    remote_read_timeout: float = 60.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("upload_part_size")
    @classmethod
    def _check_part_size(cls, value: int) -> int:
        # S3 rejects non-final parts below 5 MiB
        if value < 5 * MIB:
            raise ValueError("upload_part_size must be at least 5 MiB")
        return value

    @field_validator("upload_queue_size")
    @classmethod
    def _check_queue_size(cls, value: int) -> int:
        if value < 1:
            raise ValueError("upload_queue_size must be at least 1")
        return value

    @field_validator("retrieval_mode")
    @classmethod
    def _check_retrieval_mode(cls, value: str) -> str:
        value = value.lower()
        if value not in ("stream", "redirect"):
            raise ValueError("retrieval_mode must be 'stream' or 'redirect'")
        return value

    @field_validator("content_disposition_type")
    @classmethod
    def _check_disposition(cls, value: str) -> str:
        value = value.lower()
        if value not in ("attachment", "inline"):
            raise ValueError("content_disposition_type must be 'attachment' or 'inline'")
        return value

    @property
    def r2_endpoint_url(self) -> Optional[str]:
        """Explicit endpoint, or the R2 endpoint derived from the account ID."""
        if self.r2_endpoint:
            return self.r2_endpoint
        if self.r2_account_id:
            return f"https://{self.r2_account_id}.r2.cloudflarestorage.com"
        return None


# Global settings instance
settings = Settings()
