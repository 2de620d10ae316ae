from functools import lru_cache
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

    # Database Configuration - required from .env
    DATABASE_URL: str

    LOG_LEVEL: str = "INFO"

    # Conversations whose title starts with this prefix are broadcast threads
    MULTI_RECIPIENT_TITLE_PREFIX: str = "Multiple Recipients"

    # Upper bound on recent messages re-scanned by the digits-only fallback
    HISTORY_SCAN_LIMIT: int = 200

    # Upper bound on group / multi-recipient conversations considered per message
    GROUP_SCAN_LIMIT: int = 100

    # Treat a repeated MessageSid as an idempotent no-op instead of a new row
    ENFORCE_UNIQUE_MESSAGE_SID: bool = False

    # Optional TwiML auto-reply text; empty means an empty <Response/>
    SMS_AUTO_REPLY: str = ""


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
