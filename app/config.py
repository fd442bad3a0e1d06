"""
Application configuration using pydantic-settings.
Loads from environment variables / .env file.
"""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "chartpay"
    app_env: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    secret_key: str = ""
    session_token_ttl_minutes: int = 10080

    # API Server
    host: str = "0.0.0.0"
    port: int = 8000
    public_site_url: str = "http://localhost:3000"

    # Postgres
    database_url: str = ""

    # Redis (also Celery broker + backend)
    redis_url: str = "redis://localhost:6379/0"

    # Payment processor (Yoco)
    processor_api_base: str = "https://payments.yoco.com"
    processor_secret_key: str = ""
    processor_webhook_secret: str = ""
    processor_signature_header: str = "X-Yoco-Signature"
    processor_timeout_seconds: float = 10.0
    processor_currency: str = "ZAR"

    # Cron (bearer secret for the HTTP sweep trigger)
    cron_secret: str = ""

    # Admin
    admin_api_key: str = ""
    admin_email: str = ""

    # Brevo transactional e-mail
    brevo_api_key: str = ""
    email_from_address: str = "billing@chartpay.app"
    email_from_name: str = "ChartPay"

    # Sweep job
    sweep_min_age_seconds: int = 120
    sweep_expiry_seconds: int = 3600
    sweep_call_delay_seconds: float = 0.3
    sweep_interval_minutes: int = 5

    # Checkout-success poller
    poll_max_attempts: int = 15
    poll_window_seconds: int = 60
    poll_recent_completed_seconds: int = 600

    # Side-effect outbox
    outbox_max_attempts: int = 5
    outbox_retry_seconds: int = 60
    outbox_batch_size: int = 50

    # Guest checkout rate limit (per client IP)
    guest_checkout_rate_limit: int = 5
    guest_checkout_rate_window_seconds: int = 600

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
