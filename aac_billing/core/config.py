"""
Billing Engine Configuration
Business thresholds and clearinghouse settings for the claims engine.
Source: https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from decimal import Decimal
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from aac_billing.core.enums import ClearinghouseProvider


class BillingSettings(BaseSettings):
    """
    Billing engine configuration settings.

    All values can be overridden with BILLING_-prefixed environment
    variables, e.g. BILLING_AUTH_UNITS_WARNING_THRESHOLD=5.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_prefix="BILLING_",
    )

    # =========================================================================
    # Authorization Warnings
    # =========================================================================
    AUTH_UNITS_WARNING_THRESHOLD: int = Field(
        default=10,
        ge=0,
        description="Warn when fewer than this many authorized units remain",
    )
    AUTH_EXPIRY_WARNING_DAYS: int = Field(
        default=30,
        ge=0,
        description="Warn when the active authorization expires within this many days",
    )

    # =========================================================================
    # Reporting
    # =========================================================================
    PROJECTION_COLLECTION_RATE: Decimal = Field(
        default=Decimal("0.8"),
        ge=Decimal("0"),
        le=Decimal("1"),
        description="Expected collection rate applied to unpaid claims in projections",
    )
    PROJECTION_LOOKBACK_DAYS: int = Field(
        default=30,
        gt=0,
        description="Days of recent claims used as the monthly projection basis",
    )
    AGING_BUCKET_DAYS: list[int] = Field(
        default=[30, 60, 90, 120],
        description="Upper bounds (inclusive) of the current/30/60/90 aging buckets",
    )

    # =========================================================================
    # Clearinghouse
    # =========================================================================
    CLEARINGHOUSE_PROVIDER: ClearinghouseProvider = Field(
        default=ClearinghouseProvider.SIMULATED,
        description="simulated (in-process) or http",
    )
    CLEARINGHOUSE_BASE_URL: str = Field(
        default="http://localhost:8089",
        description="Clearinghouse API base URL",
    )
    CLEARINGHOUSE_API_KEY: str | None = Field(
        default=None,
        description="Clearinghouse API key",
    )
    CLEARINGHOUSE_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        gt=0,
        description="Per-request timeout for clearinghouse calls",
    )
    CLEARINGHOUSE_RETRY_ATTEMPTS: int = Field(
        default=3,
        ge=1,
        description="Attempts per clearinghouse call before giving up",
    )
    CLEARINGHOUSE_RETRY_DELAY_SECONDS: float = Field(
        default=1.0,
        ge=0,
        description="Initial delay between retries (doubles each attempt)",
    )
    CLAIM_NUMBER_PREFIX: str = Field(
        default="CLM",
        min_length=1,
        max_length=10,
        description="Prefix for locally generated claim numbers",
    )

    # =========================================================================
    # Workflow
    # =========================================================================
    MAX_APPEAL_ATTEMPTS: int = Field(
        default=2,
        ge=0,
        description="How many times a denied claim may be appealed",
    )
    UNBILLED_LOOKBACK_DAYS: int = Field(
        default=30,
        gt=0,
        description="Window scanned by the automatic unbilled-session sweep",
    )
    STATUS_POLL_INTERVAL_MINUTES: int = Field(
        default=60,
        gt=0,
        description="How often the worker polls the clearinghouse for claim status",
    )

    @field_validator("AGING_BUCKET_DAYS")
    @classmethod
    def validate_aging_buckets(cls, v: list[int]) -> list[int]:
        """Aging needs four strictly increasing bucket bounds."""
        if len(v) != 4:
            raise ValueError("AGING_BUCKET_DAYS must contain exactly 4 bounds")
        if any(b <= a for a, b in zip(v, v[1:])) or v[0] < 0:
            raise ValueError("AGING_BUCKET_DAYS must be non-negative and strictly increasing")
        return v


@lru_cache
def get_billing_settings() -> BillingSettings:
    """Get cached billing settings instance."""
    return BillingSettings()
