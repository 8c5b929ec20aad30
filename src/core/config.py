"""Configuration management for the task negotiation engine."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.domain.task import TaskStatus


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")
    service_name: str = Field(default="task-negotiation", description="Service name reported to Logfire")
    environment: str = Field(default="production", description="Deployment environment reported to Logfire")

    # Negotiation Configuration
    default_currency: str = Field(default="DZD", description="Currency used when a caller omits one")
    reject_cost_target: TaskStatus = Field(
        default=TaskStatus.COST_REVIEW,
        description="Status a task returns to when the requester rejects a proposed cost",
    )

    # Persistence Configuration
    max_save_retries: int = Field(
        default=3, ge=0, description="Reload-and-retry attempts after an optimistic-lock conflict"
    )


# Application Constants
class Constants:
    """Application-wide constants."""

    # Retry backoff after a version conflict
    SAVE_RETRY_BASE_DELAY_SECONDS: float = 0.05


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
