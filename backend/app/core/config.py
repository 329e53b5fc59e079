# backend/app/core/config.py
import logging
import os
from pathlib import Path
from typing import Optional, Set

from dotenv import load_dotenv
from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import pytz

from .constants import DEFAULT_TIMEZONE


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


PROD_SITE_MODES: Set[str] = {"prod", "production", "live"}


def _is_production(raw_site_mode: str | None) -> bool:
    return (raw_site_mode or "").strip().lower() in PROD_SITE_MODES


class Settings(BaseSettings):
    # Environment (derived from SITE_MODE)
    environment: str = (
        "production" if _is_production(os.getenv("SITE_MODE", "local")) else "development"
    )
    log_level: str = Field(default="INFO", description="Root log level")

    # Database
    database_url: str = Field(
        default="sqlite:///./classbook.db",
        description="SQLAlchemy URL for the primary database",
    )
    test_database_url: str = Field(
        default="sqlite:///./classbook_test.db",
        description="SQLAlchemy URL used by the test suite",
    )
    is_testing: bool = False  # Set to True when running tests
    create_tables_on_startup: bool = Field(
        default=True, description="Run metadata.create_all when the app starts"
    )

    # Booking policy defaults, applied when a course has no stored policy
    default_min_advance_booking_hours: float = Field(default=2, ge=0)
    default_max_advance_booking_days: int = Field(default=60, ge=1)
    default_slot_duration_hours: float = Field(default=1, gt=0)
    default_buffer_time_minutes: int = Field(default=0, ge=0)
    default_timezone: str = DEFAULT_TIMEZONE

    # Pricing
    default_price_per_hour: float = Field(
        default=1, ge=0, description="Credits charged per hour when a course has no price"
    )

    # Cancellation refunds
    refund_cutoff_hours: float = Field(
        default=24,
        ge=0,
        description="Student cancellations at least this many hours ahead are refunded",
    )

    # Slot queries
    max_query_days: int = Field(default=92, ge=1, description="Longest slot query range in days")
    slot_cache_ttl_seconds: int = Field(default=60, ge=0)
    slot_cache_redis_url: Optional[str] = Field(
        default=None, description="Optional Redis URL backing the slot cache"
    )

    # Reservation locks
    booking_lock_redis_url: Optional[str] = Field(
        default=None,
        description="Optional Redis URL for cross-process reservation locks",
    )
    booking_lock_ttl_seconds: int = Field(default=30, ge=1)
    booking_lock_wait_seconds: float = Field(default=5.0, gt=0)
    booking_lock_namespace: str = "classbook"

    # Video room hand-off
    video_room_base_url: str = "https://meet.jit.si"
    video_room_prefix: str = "classbook"

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("default_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        if v not in pytz.all_timezones_set:
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @field_validator("test_database_url")
    @classmethod
    def validate_test_database(cls, v: str, info: ValidationInfo) -> str:
        """Ensure test database is clearly a test database."""
        if v and not v.startswith("sqlite") and "test" not in v.lower():
            logger.warning(
                "Test database URL doesn't contain 'test' in its name. "
                "Consider using a clearly named test database."
            )
        return v

    def get_database_url(self) -> str:
        """Get the appropriate database URL based on context."""
        if self.is_testing or is_running_tests():
            return self.test_database_url
        return self.database_url


settings = Settings()
