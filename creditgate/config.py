"""
Application Configuration - Pydantic Settings for type-safe config.

FAIL FAST - Invalid config is rejected at startup.
Optional integrations (email, PayPal verification, OpenAI) are switched off
when their credentials are absent; see Settings.disabled_components().
"""

import sys
from decimal import Decimal
from typing import Literal

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from creditgate.exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - empty URL selects the in-memory store
    database_url: str = ""
    database_name: str = ""  # Overrides the database part of DATABASE_URL
    database_pool_size: int = 10
    database_max_overflow: int = 5
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = True

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = Field(default=3000, validation_alias=AliasChoices("PORT", "API_PORT"))
    api_title: str = "Credit Gate API"
    api_version: str = "0.1.0"
    api_description: str = "PayPal-funded credit ledger and AI completion proxy"
    cors_allow_origins: list[str] = ["*"]

    # Admin endpoints - unset means open (legacy behaviour)
    admin_api_key: str | None = None

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability
    metrics_enabled: bool = True
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "creditgate-api"

    # Credits
    free_credits_per_device: int = 50
    low_balance_threshold: int = 100
    credit_pack_mode: Literal["tiered", "fixed"] = "tiered"
    basic_pack_price: Decimal = Decimal("5")
    basic_pack_credits: int = 2000
    premium_pack_price: Decimal = Decimal("10")
    premium_pack_credits: int = 5000
    fixed_pack_credits: int = 2000

    # Activation codes
    activation_codes_enabled: bool = True
    activation_validity_days: int = 30
    manual_activation_enabled: bool = False

    # PayPal
    paypal_mode: Literal["sandbox", "live"] = "sandbox"
    paypal_client_id: str = ""
    paypal_client_secret: str = ""
    paypal_webhook_id: str = ""
    paypal_completed_event_types: list[str] = [
        "PAYMENT.SALE.COMPLETED",
        "PAYMENT.CAPTURE.COMPLETED",
    ]

    # Email - SendGrid takes precedence over SMTP
    email_from: str = ""
    sendgrid_api_key: str = ""
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""  # Gmail app password
    smtp_use_tls: bool = True

    # Completion service
    openai_api_key: str = ""
    completion_model: str = "gpt-4o-mini"
    completion_allowed_models: list[str] = []
    completion_max_tokens: int = 500
    completion_timeout_seconds: float = 30.0
    completion_system_prompt: str = (
        "You are BABY, a concise and helpful AI assistant. "
        "Answer clearly and keep responses short."
    )
    refund_on_upstream_failure: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Reject configuration that would misbehave at runtime.

        Missing optional credentials are not errors; they disable a component.
        """
        errors: list[str] = []

        if self.database_url and not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if self.free_credits_per_device < 0:
            errors.append("FREE_CREDITS_PER_DEVICE cannot be negative")

        if self.basic_pack_credits <= 0 or self.premium_pack_credits <= 0:
            errors.append("Pack credit sizes must be positive")

        if self.fixed_pack_credits <= 0:
            errors.append("FIXED_PACK_CREDITS must be positive")

        if self.premium_pack_price <= self.basic_pack_price:
            errors.append("PREMIUM_PACK_PRICE must be greater than BASIC_PACK_PRICE")

        if self.completion_max_tokens <= 0:
            errors.append("COMPLETION_MAX_TOKENS must be positive")

        if self.completion_timeout_seconds <= 0:
            errors.append("COMPLETION_TIMEOUT_SECONDS must be positive")

        if self.activation_validity_days <= 0:
            errors.append("ACTIVATION_VALIDITY_DAYS must be positive")

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
    def paypal_api_base(self) -> str:
        """PayPal REST base URL for the configured mode."""
        if self.paypal_mode == "live":
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"

    @property
    def paypal_verification_enabled(self) -> bool:
        return bool(self.paypal_webhook_id and self.paypal_client_id and self.paypal_client_secret)

    @property
    def email_transport(self) -> Literal["sendgrid", "smtp", "log"]:
        """Which email transport the configured credentials select."""
        if self.sendgrid_api_key and self.email_from:
            return "sendgrid"
        if self.smtp_user and self.smtp_password:
            return "smtp"
        return "log"

    def disabled_components(self) -> list[tuple[str, str]]:
        """
        List (component, missing variables) pairs for optional integrations.

        Logged at startup so a missing variable is never silently ignored.
        """
        disabled: list[tuple[str, str]] = []
        if not self.database_url:
            disabled.append(("persistent_store", "DATABASE_URL"))
        if self.email_transport == "log":
            disabled.append(
                ("email", "SENDGRID_API_KEY+EMAIL_FROM or SMTP_USER+SMTP_PASSWORD")
            )
        if not self.openai_api_key:
            disabled.append(("completion_proxy", "OPENAI_API_KEY"))
        if not self.paypal_verification_enabled:
            disabled.append(
                ("paypal_signature_verification", "PAYPAL_WEBHOOK_ID+PAYPAL_CLIENT_ID+PAYPAL_CLIENT_SECRET")
            )
        return disabled


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
