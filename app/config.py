"""Configuration settings for Visit Media."""

import os
import secrets
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./visit_media.db")

    # JWT (identity tokens and signed blob URLs)
    JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", secrets.token_urlsafe(32))
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
    JWT_EXPIRE_MINUTES: int = int(os.getenv("JWT_EXPIRE_MINUTES", "480"))

    # Blob storage
    BLOB_DIR: str = os.getenv("BLOB_DIR", "blobs")
    PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000")
    SIGNED_URL_TTL_SECONDS: int = int(os.getenv("SIGNED_URL_TTL_SECONDS", "3600"))
    BLOB_TIMEOUT_SECONDS: float = float(os.getenv("BLOB_TIMEOUT_SECONDS", "30"))

    # Attachment limits
    MAX_ATTACHMENT_SIZE_MB: int = int(os.getenv("MAX_ATTACHMENT_SIZE_MB", "10"))
    PHOTO_QUOTA: int = int(os.getenv("PHOTO_QUOTA", "5"))
    VOICE_QUOTA: int = int(os.getenv("VOICE_QUOTA", "3"))

    # Application
    APP_ENV: str = os.getenv("APP_ENV", "development")
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"

    @property
    def max_attachment_bytes(self) -> int:
        return self.MAX_ATTACHMENT_SIZE_MB * 1024 * 1024

    def validate(self) -> list[str]:
        """Validate settings and return list of warnings."""
        errors = []
        if not os.getenv("JWT_SECRET_KEY"):
            errors.append("JWT_SECRET_KEY is not set - using auto-generated key (not persistent across restarts)")
        if self.PHOTO_QUOTA < 1 or self.VOICE_QUOTA < 1:
            errors.append("PHOTO_QUOTA and VOICE_QUOTA should be at least 1")
        if self.SIGNED_URL_TTL_SECONDS <= 0:
            errors.append("SIGNED_URL_TTL_SECONDS must be positive")
        return errors


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
