from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./dealclaim.db"
    secret_key: str = "change-me"

    # Application URLs
    frontend_url: str = "http://localhost:3000"
    api_base_url: str = "http://localhost:8000"

    # Stripe Connect (integrated deposit tier)
    stripe_secret_key: str = ""
    stripe_connect_webhook_secret: str = ""
    stripe_request_timeout_seconds: float = 10.0
    deposit_currency: str = "usd"

    # Tracing
    otel_service_name: str = "dealclaim-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_console_export: bool = False

    # Internal API security
    admin_api_key: str = ""

    # Credential issuance
    credential_issue_max_attempts: int = 5
    payment_reference_prefix: str = "SC"


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
