"""
Configuration management for the reservation core.

Every business window used by the lifecycle controller (payment expiry,
bank-transfer clearance, reconciliation interval) is read from the
environment so that deployments can tune them without code changes.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Database Configuration
    database_url: str = Field(
        default="sqlite:///./reservations.db", description="SQLAlchemy database URL"
    )
    log_sql_queries: bool = False
    db_pool_size: int = 10
    db_max_overflow: int = 20

    # Logging
    log_level: str = "INFO"

    # Money
    currency: str = Field(default="JPY", description="ISO currency for all charges")

    # Reservation lifecycle windows
    reservation_payment_window_hours: int = Field(
        default=48, description="Unpaid reservations older than this are cancelled"
    )
    reservation_event_cutoff_hours: int = Field(
        default=3, description="Unpaid reservations this close to the event are cancelled"
    )
    reconciliation_interval_seconds: int = Field(
        default=3600, description="How often the reconciliation sweeps run"
    )

    # Bank transfer deadline rules
    bank_transfer_max_days: int = 7
    bank_transfer_event_lead_days: int = 3
    bank_transfer_min_clearance_days: int = 1

    # Gateways
    gateway_timeout_seconds: float = Field(
        default=10.0, description="Network timeout for a single gateway call"
    )
    gateway_sweep_retry_attempts: int = 3
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    wallet_api_url: str = "https://wallet.example.com/v1"
    wallet_api_key: Optional[str] = None
    wallet_webhook_secret: Optional[str] = None
    frontend_url: str = "http://localhost:3000"

    # Invite codes and vouchers
    invite_code_length: int = 8
    voucher_code_length: int = 16
    voucher_validity_days: int = 365

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()


settings = get_settings()
