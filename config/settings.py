"""
Configuration settings for the application
"""
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # Azure OpenAI assistant configuration
    azure_openai_api_key: Optional[str] = Field(default=None, alias="AZURE_OPENAI_API_KEY")
    azure_openai_endpoint: Optional[str] = Field(default=None, alias="AZURE_OPENAI_ENDPOINT")
    azure_openai_assistant_id: Optional[str] = Field(default=None, alias="AZURE_OPENAI_ASSISTANT_ID")
    azure_openai_api_version: str = Field(default="2024-05-01-preview", alias="AZURE_OPENAI_API_VERSION")

    # Identity provider (Auth0) configuration
    auth0_issuer_base_url: Optional[str] = Field(default=None, alias="AUTH0_ISSUER_BASE_URL")
    auth0_audience: Optional[str] = Field(default=None, alias="AUTH0_AUDIENCE")

    # Local HS256 tokens (development and tests)
    jwt_secret_key: Optional[str] = Field(default=None, alias="JWT_SECRET_KEY")

    # Stripe billing configuration
    stripe_secret_key: Optional[str] = Field(default=None, alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: Optional[str] = Field(default=None, alias="STRIPE_WEBHOOK_SECRET")
    stripe_price_id: Optional[str] = Field(default=None, alias="STRIPE_PRICE_ID")

    # Infrastructure configuration
    redis_url: Optional[str] = Field(default=None, alias="REDIS_URL")
    database_url: Optional[str] = Field(default="sqlite+aiosqlite:///./sql_app.db", alias="DATABASE_URL")

    # Frontend configuration
    frontend_url: Optional[str] = Field(default="http://localhost:5173", alias="FRONTEND_URL")
    allowed_origins: Optional[str] = Field(default=None, alias="ALLOWED_ORIGINS")

    # Entitlement and run lifecycle tuning
    trial_days: int = Field(default=7, alias="TRIAL_DAYS")
    run_poll_interval_seconds: float = Field(default=1.0, alias="RUN_POLL_INTERVAL_SECONDS")
    run_deadline_seconds: float = Field(default=300.0, alias="RUN_DEADLINE_SECONDS")
    assistant_http_timeout_seconds: float = Field(default=30.0, alias="ASSISTANT_HTTP_TIMEOUT_SECONDS")

    # Requests per minute per client IP
    rate_limit_per_minute: int = Field(default=30, alias="RATE_LIMIT_PER_MINUTE")

    # Environment configuration
    env: Optional[str] = Field(default=None, alias="ENV")

    def cors_origins(self) -> List[str]:
        """Frontend origins allowed by CORS (frontend_url plus ALLOWED_ORIGINS)."""
        origins = [self.frontend_url] if self.frontend_url else []
        if self.allowed_origins:
            origins.extend(o.strip() for o in self.allowed_origins.split(",") if o.strip())
        return origins


# Instantiate settings object
settings = Settings()

# Determine if we're in production mode
IS_PRODUCTION = bool(settings.env and settings.env.lower() == "production")
