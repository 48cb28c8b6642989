"""Configuration management for the kiosk service."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Redis Configuration
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis URL")

    # API Configuration
    api_port: int = Field(default=8000, description="API server port")
    api_host: str = Field(default="0.0.0.0", description="API server host")

    # Environment
    environment: Literal["development", "staging", "production"] = Field(
        default="development"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "text"] = Field(default="json", description="Log format")

    # Payment providers
    stripe_secret_key: str | None = Field(default=None, description="Stripe secret key")
    stripe_api_base: str = Field(
        default="https://api.stripe.com", description="Stripe API base URL"
    )
    coinbase_commerce_api_key: str | None = Field(
        default=None, description="Coinbase Commerce API key"
    )
    coinbase_commerce_api_base: str = Field(
        default="https://api.commerce.coinbase.com",
        description="Coinbase Commerce API base URL",
    )
    currency: str = Field(default="usd", description="Fixed checkout currency")

    # Network timeouts (seconds)
    provider_timeout: float = Field(
        default=5.0, description="Payment provider request timeout"
    )
    settlement_timeout: float = Field(
        default=5.0, description="Kiosk-side settlement call timeout"
    )
    lock_timeout: float = Field(default=5.0, description="Smart lock request timeout")

    # Remote checkout server for displays that do not run the API in-process
    checkout_server_url: str | None = Field(
        default=None, description="Base URL of the checkout API, e.g. http://server:8000"
    )

    # Smart lock
    default_lock_duration_sec: int = Field(
        default=30, description="Unlock duration when a machine has none configured"
    )

    # Checkout flow timers (seconds)
    inactivity_timeout: float = Field(
        default=90.0, description="Empty-cart browse timeout before returning to idle"
    )
    receipt_countdown: float = Field(
        default=15.0, description="Receipt screen countdown before auto reset"
    )
    activation_delay: float = Field(
        default=1.8, description="Delay between presence and browse so the greeting plays"
    )

    # Presence detection
    camera_enabled: bool = Field(default=True, description="Open the kiosk camera")
    camera_index: int = Field(default=0, description="OpenCV capture device index")
    presence_interval_ms: int = Field(default=600, description="Frame sampling interval")
    motion_threshold: float = Field(
        default=12.0, description="Mean pixel delta treated as motion"
    )
    face_detection_enabled: bool = Field(
        default=True, description="Try Haar cascade face detection before motion"
    )

    # Voice greeting
    voice_enabled: bool = Field(default=True, description="Speak a greeting on presence")
    greeting_cooldown: float = Field(
        default=10.0, description="Minimum seconds between two greetings"
    )

    # Door access log
    max_door_log_limit: int = Field(default=100, description="Door log page size cap")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v_upper

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        """Currency codes are sent lower-case to the providers."""
        return v.lower()


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
