from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    LOG_LEVEL: str = "INFO"

    # Number shown to users of the inbox; /api/phone-number returns 500 without it
    TWILIO_PHONE_NUMBER: Optional[str] = None

    # Webhook signature verification is enabled only when the token is set
    TWILIO_AUTH_TOKEN: Optional[str] = None

    # Public URL Twilio posts to; needed when running behind a proxy
    TWILIO_WEBHOOK_URL: Optional[str] = None


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()
