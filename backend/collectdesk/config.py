"""Application configuration using Pydantic BaseSettings."""

import logging
import os
from typing import Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("collectdesk.config")

# Development-only default for JWT_SECRET
_DEV_JWT_SECRET = "dev-secret-key-change-in-production-min-32-characters-long"


def _is_production() -> bool:
    return os.getenv("APP_ENV", "").lower() == "production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # MongoDB Configuration
    MONGO_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "collectdesk"

    # Authentication
    ADMIN_USERNAME: str = "admin"
    ADMIN_PASSWORD: str = "admin123"
    JWT_SECRET: Optional[str] = None
    JWT_EXPIRE_HOURS: int = 24

    # CORS Configuration
    # Comma-separated list of allowed origins, or "*" for all origins
    CORS_ORIGINS: str = ""

    # Application Metadata
    APP_VERSION: str = "1.0.0"

    # Collection calculations
    DEFAULT_PROFIT_SHARE: int = 50
    SAS_FALLBACK_HOURS: int = 24
    SAS_PREVIOUS_BUFFER_SECONDS: int = 60
    MOVEMENT_TOLERANCE: float = 0.01

    @field_validator("JWT_SECRET", mode="before")
    @classmethod
    def validate_jwt_secret(cls, v):
        """Validate JWT_SECRET and provide development default with warning."""
        if v is None or v == "":
            if _is_production():
                raise ValueError(
                    "JWT_SECRET must be set in production. "
                    "This is a critical security requirement."
                )
            logger.warning(
                "JWT_SECRET not set! Using development default. "
                "This is INSECURE for production. "
                "Set JWT_SECRET environment variable."
            )
            return _DEV_JWT_SECRET
        return v

    @field_validator("DEFAULT_PROFIT_SHARE")
    @classmethod
    def validate_profit_share(cls, v: int) -> int:
        if not 0 <= v <= 100:
            raise ValueError("DEFAULT_PROFIT_SHARE must be between 0 and 100")
        return v

    @property
    def cors_origins(self) -> list[str]:
        """Return list of allowed CORS origins.

        If CORS_ORIGINS is empty, allows the local dashboard origins in
        development but returns empty in production.
        """
        if self.CORS_ORIGINS:
            if self.CORS_ORIGINS == "*":
                return ["*"]
            return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

        if _is_production():
            logger.warning(
                "CORS_ORIGINS not configured in production. "
                "Set CORS_ORIGINS environment variable."
            )
            return []

        # Development defaults
        return [
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
        ]


# Global settings instance
settings = Settings()
