import os
from dotenv import load_dotenv
from typing import Optional

# Configuration constants
DEFAULT_TIMEZONE = "UTC"
REST_API_PREFIX = "/rest/v1"

load_dotenv()

class Config:
    """Configuration class for the survey analytics service."""

    # Backing store configuration
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    REST_URL: str = os.getenv("REST_URL", "")
    REST_API_KEY: str = os.getenv("REST_API_KEY", "")
    REST_API_PREFIX: str = REST_API_PREFIX

    # Reporting configuration
    TIMEZONE: str = os.getenv("TIMEZONE", DEFAULT_TIMEZONE)
    TREND_WINDOW_DAYS: int = int(os.getenv("TREND_WINDOW_DAYS", "30"))

    # Realtime aggregation
    ACTIVITY_WINDOW_SECONDS: int = int(os.getenv("ACTIVITY_WINDOW_SECONDS", "300"))  # 5 minutes
    ACTIVE_RESPONDENT_WINDOW_SECONDS: int = int(os.getenv("ACTIVE_RESPONDENT_WINDOW_SECONDS", "600"))
    ACTIVITY_LIMIT: int = int(os.getenv("ACTIVITY_LIMIT", "100"))
    RECENT_RESPONSES_LIMIT: int = int(os.getenv("RECENT_RESPONSES_LIMIT", "10"))
    CLEANUP_INTERVAL_SECONDS: int = int(os.getenv("CLEANUP_INTERVAL_SECONDS", "60"))
    RESPONSE_CACHE_TTL: int = int(os.getenv("RESPONSE_CACHE_TTL", "300"))

    # Reconnection policy for live subscribers
    RECONNECT_MAX_ATTEMPTS: int = int(os.getenv("RECONNECT_MAX_ATTEMPTS", "5"))
    RECONNECT_BASE_DELAY: float = float(os.getenv("RECONNECT_BASE_DELAY", "1.0"))
    RECONNECT_MAX_DELAY: float = float(os.getenv("RECONNECT_MAX_DELAY", "30.0"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_DIR: Optional[str] = os.getenv("LOG_DIR")

    @classmethod
    def validate(cls) -> None:
        """Validate required configuration values."""
        if not cls.DATABASE_URL and not cls.REST_URL:
            raise ValueError("DATABASE_URL or REST_URL is required")
        if cls.REST_URL and not cls.DATABASE_URL and not cls.REST_API_KEY:
            raise ValueError("REST_API_KEY is required when using REST_URL")
