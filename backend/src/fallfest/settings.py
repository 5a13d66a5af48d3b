"""Application settings and configuration."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="FALLFEST_",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "fallfest"
    env: str = "development"
    allowed_origins: str = "http://localhost:5173"
    public_base_url: str = Field(
        default="http://localhost:5173",
        description="Origin of the event site, used to build share links",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["console", "json"] = "console"

    # Backing store
    store_backend: Literal["sql", "rest"] = Field(
        default="sql",
        description="Participant store: local SQL database or hosted REST table",
    )
    database_url: str = "sqlite:///./fallfest.db"
    rest_url: str | None = Field(
        default=None,
        description="Base URL of the hosted PostgREST project, e.g. https://xyz.supabase.co",
    )
    rest_api_key: str | None = None
    registrations_table: str = "registrations"
    request_timeout_seconds: float = 10.0

    # Identity provider
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_audience: str | None = "authenticated"

    # Referral program
    referral_code_length: int = 8
    max_code_attempts: int = 10
    leaderboard_limit: int = 10
    leaderboard_refresh_seconds: float = 30.0
    pending_referral_max_age: int = 60 * 60 * 24 * 30  # 30 days

    # Rate limiting (production only)
    default_rate_limit: str = "200/minute"
    validate_rate_limit: str = "30/minute"


# Global settings instance
settings = Settings()
