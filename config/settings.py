#!/usr/bin/env python3
"""
Plaid Test Kit Configuration Settings
=====================================

Configuration using Pydantic for validation.
Supports Railway deployment with environment-specific settings.

Usage:
    from config.settings import get_settings
    settings = get_settings()
    print(settings.BASE_URL)
"""

import os
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

# Plaid webhook egress addresses
PLAID_WEBHOOK_IPS = [
    '52.21.26.131',
    '52.21.47.157',
    '52.41.247.19',
    '52.88.82.239',
]

DAY_SECONDS = 24 * 60 * 60
HOUR_SECONDS = 60 * 60


class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    All settings can be overridden via environment variables or a .env file.
    Railway automatically injects the RAILWAY_* values.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ==========================================================================
    # ENVIRONMENT
    # ==========================================================================
    ENVIRONMENT: str = Field(default="development", description="development, production or testing")
    DEBUG: bool = Field(default=False, description="Enable debug mode")
    TESTING: bool = Field(default=False, description="Running under the test suite")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_DIR: str = Field(default="logs", description="Log directory")
    LOG_TO_FILE: bool = Field(default=True, description="Write rotating log files")

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.ENVIRONMENT == "production" or bool(self.RAILWAY_ENVIRONMENT)

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.ENVIRONMENT == "development" and not self.RAILWAY_ENVIRONMENT

    # ==========================================================================
    # APPLICATION
    # ==========================================================================
    SECRET_KEY: str = Field(default="", description="Flask session secret")
    ENCRYPTION_KEY: str = Field(default="", description="Secret used to derive the credential cipher key")
    HOST: str = Field(default="localhost", description="Server host")
    PORT: int = Field(default=3000, description="Server port")

    # ==========================================================================
    # SESSIONS & CREDENTIALS
    # ==========================================================================
    SESSION_DIR: str = Field(default="sessions", description="Directory for server-side session files")
    SESSION_COOKIE_NAME: str = Field(default="plaid-test-kit-session")
    SESSION_TTL_SECONDS: int = Field(default=DAY_SECONDS, description="Session lifetime")
    SESSION_REAP_INTERVAL_SECONDS: int = Field(default=HOUR_SECONDS, description="Expired session cleanup interval")
    CREDENTIALS_COOKIE_NAME: str = Field(default="plaidCredentials")

    # ==========================================================================
    # ITEMS & LINK STATE
    # ==========================================================================
    ITEM_TTL_SECONDS: int = Field(default=DAY_SECONDS, description="How long item routing entries live")
    ITEM_SWEEP_INTERVAL_SECONDS: int = Field(default=HOUR_SECONDS, description="Expired item sweep interval")
    ITEM_MAX_ENTRIES: int = Field(default=10000)

    # Seed item for local webhook testing (development only)
    TEST_ITEM_ID: str = Field(default="")
    TEST_CLIENT_ID: str = Field(default="")
    TEST_SECRET: str = Field(default="")
    TEST_ENV: str = Field(default="sandbox")

    # ==========================================================================
    # WEBHOOKS
    # ==========================================================================
    WEBHOOK_RETENTION_SECONDS: int = Field(default=DAY_SECONDS, description="Webhook records older than this are evicted")
    WEBHOOK_ALLOWED_IPS: str = Field(
        default=",".join(PLAID_WEBHOOK_IPS),
        description="Comma-separated webhook sender allow-list"
    )
    WEBHOOK_RATE_LIMIT: str = Field(default="30 per minute")
    RATELIMIT_STORAGE_URI: str = Field(default="memory://")
    RATELIMIT_ENABLED: bool = Field(default=True)

    @property
    def webhook_allowed_ips(self) -> List[str]:
        return [ip.strip() for ip in self.WEBHOOK_ALLOWED_IPS.split(',') if ip.strip()]

    @field_validator('WEBHOOK_RATE_LIMIT')
    @classmethod
    def require_rate_limit(cls, v):
        if not v or ' per ' not in v:
            raise ValueError("WEBHOOK_RATE_LIMIT must look like '30 per minute'")
        return v

    # ==========================================================================
    # RAILWAY SPECIFIC
    # ==========================================================================
    RAILWAY_ENVIRONMENT: str = Field(default="")
    RAILWAY_PUBLIC_DOMAIN: str = Field(default="")
    RAILWAY_STATIC_URL: str = Field(default="")

    @property
    def BASE_URL(self) -> str:
        """Public URL used for OAuth and hosted Link redirects."""
        if self.RAILWAY_ENVIRONMENT:
            return f"https://{self.RAILWAY_PUBLIC_DOMAIN or self.RAILWAY_STATIC_URL}"
        return f"http://{self.HOST}:{self.PORT}"


# ==========================================================================
# ENVIRONMENT-SPECIFIC CONFIGS
# ==========================================================================

class DevelopmentSettings(Settings):
    """Development-specific settings."""
    DEBUG: bool = True
    LOG_LEVEL: str = "DEBUG"


class ProductionSettings(Settings):
    """Production-specific settings."""
    ENVIRONMENT: str = "production"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"


class TestingSettings(Settings):
    """Settings for the test suite. Never reads secrets from the environment."""
    ENVIRONMENT: str = "testing"
    TESTING: bool = True
    DEBUG: bool = False
    LOG_TO_FILE: bool = False
    SECRET_KEY: str = "test-secret-key"
    ENCRYPTION_KEY: str = "test-encryption-key"
    RATELIMIT_ENABLED: bool = False


# ==========================================================================
# SETTINGS FACTORY
# ==========================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get settings based on environment.

    Uses caching to avoid re-reading environment variables.
    """
    env = os.environ.get("ENVIRONMENT", "development")

    if env == "production" or os.environ.get("RAILWAY_ENVIRONMENT"):
        return ProductionSettings()
    elif env == "testing":
        return TestingSettings()
    else:
        return DevelopmentSettings()


# ==========================================================================
# VALIDATION HELPERS
# ==========================================================================

def validate_settings(settings: Optional[Settings] = None) -> bool:
    """
    Validate that all required settings are configured.

    Call this at application startup.
    """
    settings = settings or get_settings()
    errors = []

    if not settings.SECRET_KEY:
        errors.append("SECRET_KEY is required (generate one with: openssl rand -base64 32)")

    if settings.is_production and not settings.ENCRYPTION_KEY:
        errors.append("ENCRYPTION_KEY must be set in production")

    if settings.SESSION_TTL_SECONDS <= 0 or settings.ITEM_TTL_SECONDS <= 0:
        errors.append("SESSION_TTL_SECONDS and ITEM_TTL_SECONDS must be positive")

    if errors:
        error_msg = "\n".join(f"  - {e}" for e in errors)
        raise ValueError(f"Configuration errors:\n{error_msg}")

    return True


# ==========================================================================
# EXPORTS
# ==========================================================================

__all__ = [
    "Settings",
    "DevelopmentSettings",
    "ProductionSettings",
    "TestingSettings",
    "get_settings",
    "validate_settings",
    "PLAID_WEBHOOK_IPS",
]
