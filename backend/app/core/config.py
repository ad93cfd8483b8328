"""
Application configuration.
All sensitive values loaded from environment variables.
"""
from typing import List, Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://postgres:postgres@db:5432/pulsesync"
    DATABASE_ECHO: bool = False

    # Strava OAuth application
    STRAVA_CLIENT_ID: Optional[str] = None
    STRAVA_CLIENT_SECRET: Optional[str] = None
    STRAVA_API_URL: str = "https://www.strava.com/api/v3"
    STRAVA_OAUTH_URL: str = "https://www.strava.com/oauth"
    STRAVA_SCOPE: str = "read,activity:read_all"

    # Strava pagination and rate limiting
    STRAVA_PAGE_SIZE: int = 200  # Provider maximum
    STRAVA_PAGE_DELAY_SECONDS: float = 1.0
    STRAVA_MAX_RETRIES: int = 3
    STRAVA_RETRY_BACKOFF_SECONDS: float = 1.0
    STRAVA_MAX_RATE_LIMIT_WAIT_SECONDS: float = 900.0
    STRAVA_MAX_RATE_LIMIT_RETRIES: int = 5
    STRAVA_REQUEST_TIMEOUT_SECONDS: float = 30.0

    # Sync policy
    SYNC_STALENESS_MINUTES: int = 15
    TOKEN_EXPIRY_SKEW_SECONDS: int = 300

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or console

    # Remote call debug logging - logs every provider request with its page
    # and rate-limit headers. Access tokens are never logged.
    SYNC_DEBUG_LOG: bool = False

    def is_strava_configured(self) -> bool:
        """Check whether OAuth client credentials are present."""
        return bool(self.STRAVA_CLIENT_ID and self.STRAVA_CLIENT_SECRET)

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
