"""
Application settings
Read from environment variables / .env
"""
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    APP_NAME: str = "AdOps Workflow"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./adops.db"

    # Rule / settings cache
    RULE_CACHE_TTL_SECONDS: float = 60.0

    # Event delivery
    EVENT_ASYNC: bool = True            # False: handlers run inside publish()
    EVENT_MAX_DELIVERIES: int = 3       # at-least-once re-delivery budget
    EVENT_HISTORY_SIZE: int = 100

    # Actions
    WEBHOOK_TIMEOUT_SECONDS: float = 10.0
    DEFAULT_REJECTION_FALLBACK: int = 65

    model_config = ConfigDict(env_file=".env", case_sensitive=True, extra="ignore")


# Global settings instance
settings = Settings()
