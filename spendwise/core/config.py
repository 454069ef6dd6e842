# spendwise/core/config.py
import logging
from typing import List, Optional
from pydantic import Field
from pydantic_settings import BaseSettings

from spendwise.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Only ever used outside production; startup refuses it in production.
DEVELOPMENT_CSRF_SECRET = "spendwise-development-csrf-secret"


class Settings(BaseSettings):
    """Basic application settings"""
    APP_NAME: str = "Spendwise"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Security
    CSRF_SECRET: Optional[str] = Field(default=None)
    BILLING_WEBHOOK_SECRET: Optional[str] = Field(default=None)
    RATE_LIMIT_ENABLED: bool = True
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Development seeding of the in-memory backend
    DEMO_USER_ID: str = "demo-user"
    DEMO_USER_TOKEN: Optional[str] = Field(default=None)
    DEMO_USER_PLAN: str = "free"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore"
    }

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"


def get_settings() -> Settings:
    """Build settings from the current environment"""
    return Settings()


def resolve_csrf_secret(settings: Settings) -> str:
    """
    Return the HMAC key used for CSRF digests.

    Falls back to a fixed development default outside production. In
    production a missing secret, or one equal to the default, is fatal.
    """
    secret = settings.CSRF_SECRET

    if settings.is_production:
        if not secret or secret == DEVELOPMENT_CSRF_SECRET:
            raise ConfigurationError(
                "CSRF_SECRET must be set to a unique value in production",
                component="csrf"
            )
        return secret

    if not secret:
        logger.warning("⚠️ No CSRF_SECRET set. Using the development default.")
        logger.warning("⚠️ Set CSRF_SECRET environment variable for production!")
        return DEVELOPMENT_CSRF_SECRET

    return secret


def validate_required_settings(settings: Settings) -> bool:
    """Check that all recommended settings are present"""
    missing = []

    if not settings.CSRF_SECRET:
        missing.append("CSRF_SECRET")

    if not settings.BILLING_WEBHOOK_SECRET:
        missing.append("BILLING_WEBHOOK_SECRET")

    if missing:
        logger.warning(f"Missing environment variables: {', '.join(missing)}")
        logger.warning("Some endpoints will be unavailable or use development defaults.")
        return False

    return True
