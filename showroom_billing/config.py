"""
Application Configuration - Pydantic Settings for type-safe config.

FAIL FAST - The webhook secret and the store connection are validated at startup,
never per request.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 10
    database_max_overflow: int = 5
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Showroom Billing API"
    api_version: str = "0.1.0"
    api_description: str = "Credit ledger and Gumroad purchase webhook"

    # Gumroad webhook shared secret (?key=...)
    gumroad_webhook_key: str = ""
    webhook_timeout_seconds: float = 10.0

    # Service-to-service and operator keys (routes answer 503 while unset)
    service_api_key: str = ""
    admin_api_key: str = ""

    # Trial grant for accounts created on first sign-in
    trial_credits: int = 10
    trial_days: int = 7

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "showroom-billing-api"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start without a store to write to or a secret to check
        webhook deliveries against.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if not self.gumroad_webhook_key:
            errors.append("GUMROAD_WEBHOOK_KEY is required but empty or missing")

        if self.webhook_timeout_seconds <= 0:
            errors.append("WEBHOOK_TIMEOUT_SECONDS must be positive")

        if self.trial_credits < 0:
            errors.append("TRIAL_CREDITS cannot be negative")

        if self.trial_days <= 0:
            errors.append("TRIAL_DAYS must be positive")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def read_database_url(self) -> str:
        """Get read database URL (fallback to primary if no replica)."""
        return self.database_read_url or self.database_url


# Global settings instance - validates at import time
settings = Settings()
