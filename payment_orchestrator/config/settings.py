"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PAYPAL_LIVE_BASE_URL = "https://api-m.paypal.com"
PAYPAL_SANDBOX_BASE_URL = "https://api-m.sandbox.paypal.com"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Stripe Configuration
    stripe_secret_key: Optional[str] = Field(
        default=None, description="Stripe secret API key (sk_test_... or sk_live_...)"
    )
    stripe_webhook_secret: Optional[str] = Field(
        default=None, description="Stripe webhook signing secret"
    )
    stripe_success_url: str = Field(
        default="http://localhost:3000/payment/success?session_id={CHECKOUT_SESSION_ID}",
        description="Redirect after a successful one-time checkout",
    )
    stripe_cancel_url: str = Field(
        default="http://localhost:3000/payment/cancel",
        description="Redirect after an abandoned one-time checkout",
    )
    stripe_subscription_success_url: str = Field(
        default="http://localhost:3000/subscription/success?session_id={CHECKOUT_SESSION_ID}",
        description="Redirect after a successful subscription checkout",
    )
    stripe_subscription_cancel_url: str = Field(
        default="http://localhost:3000/subscription/cancel",
        description="Redirect after an abandoned subscription checkout",
    )

    # PayPal Configuration
    paypal_client_id: Optional[str] = Field(default=None, description="PayPal REST client ID")
    paypal_client_secret: Optional[str] = Field(
        default=None, description="PayPal REST client secret"
    )
    paypal_mode: str = Field(default="sandbox", description="PayPal environment (sandbox/live)")
    paypal_success_url: str = Field(
        default="http://localhost:3000/payment/success?order_id={order_id}",
        description="Order approval return URL; {order_id} is filled in",
    )
    paypal_cancel_url: str = Field(
        default="http://localhost:3000/payment/cancel",
        description="Order cancel URL",
    )
    paypal_subscription_success_url: str = Field(
        default="http://localhost:3000/subscription/success",
        description="Subscription approval return URL",
    )
    paypal_subscription_cancel_url: str = Field(
        default="http://localhost:3000/subscription/cancel",
        description="Subscription cancel URL",
    )
    paypal_webhook_id: Optional[str] = Field(
        default=None,
        description="PayPal webhook ID; webhook verification is skipped when unset",
    )
    brand_name: str = Field(default="WebCheckly", description="Brand shown on PayPal pages")

    # Remote calls
    http_timeout_seconds: float = Field(default=30.0, description="Per-call network timeout")
    token_refresh_skew_seconds: int = Field(
        default=60, description="Refresh the PayPal token this long before it expires"
    )
    compensate_failed_provisioning: bool = Field(
        default=False,
        description="Deactivate plans created by a subscription saga that failed later",
    )

    # Webhook deduplication
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    processed_event_ttl_seconds: int = Field(
        default=86400 * 7, description="How long processed webhook IDs are remembered"
    )
    processing_claim_ttl_seconds: int = Field(
        default=300, description="How long an in-flight webhook claim blocks redelivery"
    )

    # Caller-side retry policy
    capture_retry_max_attempts: int = Field(
        default=3, description="Max attempts when capturing an approved order"
    )
    capture_retry_base_delay: float = Field(
        default=1.0, description="Base delay for capture retry backoff (seconds)"
    )

    # Application Configuration
    app_name: str = Field(default="payment-orchestrator", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("stripe_secret_key")
    @classmethod
    def validate_stripe_key(cls, v: Optional[str]) -> Optional[str]:
        """Validate that a configured Stripe secret key has a known prefix."""
        if not v:
            return None
        if not v.startswith("sk_test_") and not v.startswith("sk_live_"):
            raise ValueError(
                "Invalid Stripe secret key format. Must start with 'sk_test_' or 'sk_live_'"
            )
        return v

    @field_validator("paypal_mode")
    @classmethod
    def validate_paypal_mode(cls, v: str) -> str:
        """Validate PayPal mode."""
        mode = (v or "sandbox").strip().lower()
        if mode not in ("sandbox", "live"):
            raise ValueError("Invalid PayPal mode. Must be 'sandbox' or 'live'")
        return mode

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @property
    def paypal_base_url(self) -> str:
        """REST endpoint for the configured PayPal mode."""
        if self.paypal_mode == "live":
            return PAYPAL_LIVE_BASE_URL
        return PAYPAL_SANDBOX_BASE_URL

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    @property
    def is_test_mode(self) -> bool:
        """Check if using Stripe test mode."""
        return bool(self.stripe_secret_key) and self.stripe_secret_key.startswith("sk_test_")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
