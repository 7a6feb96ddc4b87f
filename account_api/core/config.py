"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    api_key_required: bool = Field(
        True,
        description="Whether API key authentication is required on service endpoints",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid API keys for service endpoints",
    )
    storage_backend: str = Field(
        "memory",
        description="Persistence backend: 'memory' (per-process) or 'supabase'",
    )
    public_base_url: str = Field(
        "http://localhost:3000",
        description="Public web app URL used to build gateway return URLs",
    )
    store_conflict_retries: int = Field(
        3,
        description="Attempts for a version-checked write before giving up with 409",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Attempt limiter thresholds for sensitive actions (OTP, password reset)."""

    max_attempts: int = Field(
        3,
        description="Attempts allowed before the action is locked out",
        ge=1,
    )
    lockout_minutes: int = Field(
        120,
        description="Lockout window length in minutes",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class BillingSettings(BaseSettings):
    """Subscription lifecycle configuration."""

    default_gateway: str = Field(
        "payin",
        description="Gateway used when the client does not pick one (payin or paypal)",
    )
    grace_period_days: int = Field(
        3,
        description="Days of retained pro access after a failed payment",
        ge=0,
    )
    max_payment_retries: int = Field(
        3,
        description="Failed payments after which the subscription expires",
        ge=1,
    )
    pending_max_age_hours: int = Field(
        24,
        description="Age after which an unconfirmed pending checkout is expired",
        ge=1,
    )
    webhook_secret: str | None = Field(
        None,
        description="Shared secret for HMAC-SHA256 webhook signatures",
    )
    webhook_signature_header: str = Field(
        "X-Webhook-Signature",
        description="Header carrying the hex webhook signature",
    )

    model_config = SettingsConfigDict(
        env_prefix="BILLING_",
        case_sensitive=False,
    )


class SupabaseSettings(BaseSettings):
    """Supabase project configuration (database and auth)."""

    url: str | None = Field(None, description="Supabase project URL")
    service_role_key: str | None = Field(
        None,
        description="Service role key; bypasses RLS for server-side writes",
    )
    jwt_secret: str | None = Field(
        None,
        description="Secret used to verify user access tokens (HS256)",
    )
    jwt_audience: str = Field(
        "authenticated",
        description="Expected 'aud' claim of user access tokens",
    )

    model_config = SettingsConfigDict(
        env_prefix="SUPABASE_",
        case_sensitive=False,
    )


class PayPalSettings(BaseSettings):
    """PayPal subscriptions API configuration."""

    client_id: str | None = Field(None, description="PayPal REST client id")
    client_secret: str | None = Field(None, description="PayPal REST client secret")
    base_url: str = Field(
        "https://api-m.sandbox.paypal.com",
        description="PayPal API base URL (sandbox or live)",
    )
    monthly_plan_id: str | None = Field(None, description="Billing plan id for pro_monthly")
    yearly_plan_id: str | None = Field(None, description="Billing plan id for pro_yearly")
    brand_name: str = Field("Noxyai", description="Brand shown on the approval page")
    webhook_id: str | None = Field(
        None,
        description="Id of the registered PayPal webhook, required to verify its events",
    )
    timeout_seconds: float = Field(15.0, description="HTTP timeout in seconds")

    model_config = SettingsConfigDict(
        env_prefix="PAYPAL_",
        case_sensitive=False,
    )


class PayinSettings(BaseSettings):
    """Pay.in autopay (mandate) gateway configuration."""

    base_url: str = Field("https://api.pay.in", description="Pay.in API base URL")
    merchant_id: str | None = Field(None, description="Pay.in merchant id")
    api_key: str | None = Field(None, description="Pay.in API key")
    timeout_seconds: float = Field(15.0, description="HTTP timeout in seconds")

    model_config = SettingsConfigDict(
        env_prefix="PAYIN_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="'json' or 'plain'")
    output: str = Field("stdout", description="'stdout' or 'file'")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(10_485_760, description="Rotate after this size (0 disables)")
    backup_count: int = Field(5, description="Rotated files to keep")
    request_id_header: str = Field("X-Request-ID", description="Correlation header name")

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if a setting has an invalid value.

    Environments:
    - development: Local development (in-memory storage)
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment (uses .env.production)
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=AppSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    billing: BillingSettings = Field(default_factory=BillingSettings)
    supabase: SupabaseSettings = Field(default_factory=SupabaseSettings)
    paypal: PayPalSettings = Field(default_factory=PayPalSettings)
    payin: PayinSettings = Field(default_factory=PayinSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
