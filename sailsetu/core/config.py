"""
sailsetu/core/config.py

Purpose: Application configuration

- Loads environment variables
- Centralizes config values (SailPoint, Telegram, WhatsApp bridge)
- Validates configuration on startup
- Environment-specific settings
"""

from pydantic import Field, validator
from pydantic_settings import BaseSettings
from typing import Optional, Literal


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Validates all required configs on startup.
    """

    # Environment
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"

    # SailPoint IdentityIQ (optional at boot, can be pushed later from the dashboard)
    SAILPOINT_URL: Optional[str] = Field(
        default=None,
        description="IdentityIQ base URL, e.g. https://iiq.example.com/identityiq"
    )
    SAILPOINT_USERNAME: Optional[str] = Field(
        default=None,
        description="Service account used for SCIM workflow launches"
    )
    SAILPOINT_PASSWORD: Optional[str] = Field(
        default=None,
        description="Service account password"
    )
    SAILPOINT_TIMEOUT: float = Field(
        default=60.0,
        description="Workflow launch request timeout in seconds"
    )

    # Telegram
    TELEGRAM_BOT_TOKEN: Optional[str] = Field(
        default=None,
        description="Telegram bot token; polling starts once it is known"
    )
    TELEGRAM_API_BASE: str = Field(
        default="https://api.telegram.org",
        description="Telegram Bot API base URL"
    )
    TELEGRAM_POLL_TIMEOUT: int = Field(
        default=30,
        description="Long-poll window for getUpdates in seconds"
    )
    TELEGRAM_RETRY_DELAY: float = Field(
        default=5.0,
        description="Fixed delay before retrying after a polling error"
    )

    # WhatsApp (whatsapp-web.js bridge)
    WHATSAPP_ENABLED: bool = Field(
        default=True,
        description="Accept events from the WhatsApp bridge"
    )
    WHATSAPP_BRIDGE_URL: str = Field(
        default="http://localhost:3001",
        description="Base URL of the whatsapp-web.js bridge"
    )
    WHATSAPP_BRIDGE_TOKEN: Optional[str] = Field(
        default=None,
        description="Shared secret sent to and expected from the bridge"
    )
    WHATSAPP_USE_POLLS: bool = Field(
        default=True,
        description="Send menus and choices as WhatsApp polls when possible"
    )
    WHATSAPP_REPLY_DELAY: float = Field(
        default=0.5,
        description="Pause before each reply to keep delivery order"
    )

    # Dialog engine
    MASTER_CAPABILITY: str = Field(
        default="sailsetu-master",
        description="Capability that unlocks every feature"
    )
    SLOW_REPLY_NOTICE_SECONDS: Optional[float] = Field(
        default=15.0,
        description="Send a 'still working' notice when a turn takes longer (None disables)"
    )

    # Application
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    API_PREFIX: str = Field(
        default="/api/v1",
        description="API route prefix"
    )
    CORS_ORIGINS: list = Field(
        default=["*"],
        description="Allowed CORS origins"
    )

    @validator("WHATSAPP_BRIDGE_TOKEN")
    def validate_bridge_token(cls, v, values):
        """Ensure the bridge is authenticated in production."""
        if values.get("ENVIRONMENT") == "production" and not v:
            raise ValueError("WHATSAPP_BRIDGE_TOKEN is required in production environment")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    @property
    def has_sailpoint_config(self) -> bool:
        return bool(self.SAILPOINT_URL and self.SAILPOINT_USERNAME and self.SAILPOINT_PASSWORD)

    class Config:
        env_file = ".env"
        case_sensitive = True
        env_file_encoding = "utf-8"


# Global settings instance
settings = Settings()


def validate_settings():
    """
    Validates critical settings on application startup.
    Raises ValueError if any required setting is missing or invalid.
    """
    errors = []

    # Partial SailPoint credentials are a typo, not a "configure later"
    sailpoint_fields = [settings.SAILPOINT_URL, settings.SAILPOINT_USERNAME, settings.SAILPOINT_PASSWORD]
    if any(sailpoint_fields) and not all(sailpoint_fields):
        errors.append("SAILPOINT_URL, SAILPOINT_USERNAME and SAILPOINT_PASSWORD must be set together")

    if settings.TELEGRAM_POLL_TIMEOUT <= 0:
        errors.append("TELEGRAM_POLL_TIMEOUT must be positive")

    if settings.WHATSAPP_ENABLED and not settings.WHATSAPP_BRIDGE_URL:
        errors.append("WHATSAPP_BRIDGE_URL is required when WhatsApp is enabled")

    if errors:
        raise ValueError(f"Configuration validation failed: {', '.join(errors)}")

    return True
