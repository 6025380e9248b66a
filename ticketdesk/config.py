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

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./data/ticketdesk.db"

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Bearer token for the /api and /tickets routes (auth disabled when unset)
    API_TOKEN: Optional[str] = None

    # Reference timezone for day buckets (IANA name)
    TIMEZONE: str = "UTC"

    # Query limits
    TICKET_PAGE_SIZE: int = 20
    TICKET_LIST_PAGE_SIZE: int = 40
    SEARCH_RESULT_LIMIT: int = 200
    DAILY_CONTACT_MESSAGE_LIMIT: int = 2000


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
