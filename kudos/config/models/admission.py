"""Admission control configuration: idempotency, rate limits, quotas."""

from typing import Literal

from pydantic import BaseModel, Field

QuotaPeriod = Literal["hourly", "daily", "monthly", "none"]


class IdempotencyConfig(BaseModel):
    """Idempotency guard configuration."""

    enabled: bool = Field(default=True, description="Enable request deduplication")
    ttl_seconds: int = Field(
        default=86400,
        gt=0,
        description="Lifetime of a committed response snapshot (24h)",
    )
    placeholder_ttl_seconds: int = Field(
        default=60,
        gt=0,
        description="Lifetime of an uncommitted reservation",
    )
    fail_open: bool = Field(
        default=False,
        description="Treat store outages as non-duplicates instead of failing",
    )
    wait_for_inflight: bool = Field(
        default=False,
        description="Poll for an in-flight request instead of rejecting with 409",
    )
    inflight_wait_seconds: float = Field(default=2.0, gt=0)
    inflight_poll_interval_seconds: float = Field(default=0.1, gt=0)


class RateLimitRule(BaseModel):
    """A single named fixed-window limit."""

    max_attempts: int = Field(gt=0)
    window_seconds: int = Field(gt=0)


DAY = 24 * 60 * 60

DEFAULT_RATE_LIMITS: dict[str, RateLimitRule] = {
    "recognition_daily": RateLimitRule(max_attempts=10, window_seconds=DAY),
    "recognition_weekly": RateLimitRule(max_attempts=50, window_seconds=7 * DAY),
    "recognition_monthly": RateLimitRule(max_attempts=100, window_seconds=30 * DAY),
    "auth_signin": RateLimitRule(max_attempts=5, window_seconds=5 * 60),
    "auth_signup": RateLimitRule(max_attempts=3, window_seconds=60 * 60),
    "auth_password_reset": RateLimitRule(max_attempts=3, window_seconds=60 * 60),
    "export_profile": RateLimitRule(max_attempts=5, window_seconds=DAY),
    "integration_slack": RateLimitRule(max_attempts=100, window_seconds=60 * 60),
    "integration_teams": RateLimitRule(max_attempts=100, window_seconds=60 * 60),
    "api_general": RateLimitRule(max_attempts=1000, window_seconds=60 * 60),
}


class RateLimitConfig(BaseModel):
    """Rate limiter configuration."""

    enabled: bool = Field(default=True, description="Enable rate limiting")
    limits: dict[str, RateLimitRule] = Field(
        default_factory=lambda: dict(DEFAULT_RATE_LIMITS),
        description="Named limit types",
    )
    recognition_limit_types: list[str] = Field(
        default_factory=lambda: ["recognition_daily"],
        description="Limit types enforced on recognition creation",
    )


class QuotaRule(BaseModel):
    """Default ceiling for an organization action."""

    ceiling: int = Field(gt=0)
    period: QuotaPeriod = "daily"


DEFAULT_QUOTAS: dict[str, QuotaRule] = {
    "recognitions_per_day": QuotaRule(ceiling=1000, period="daily"),
    "recognitions_per_month": QuotaRule(ceiling=25000, period="monthly"),
    "storage_gb_per_month": QuotaRule(ceiling=100, period="monthly"),
    "api_calls_per_hour": QuotaRule(ceiling=10000, period="hourly"),
    "exports_per_day": QuotaRule(ceiling=50, period="daily"),
    "shareable_links_per_day": QuotaRule(ceiling=200, period="daily"),
    "team_members": QuotaRule(ceiling=500, period="none"),
    "custom_domains": QuotaRule(ceiling=10, period="none"),
}


class QuotaConfig(BaseModel):
    """Organization quota configuration."""

    enabled: bool = Field(default=True, description="Enable quota enforcement")
    defaults: dict[str, QuotaRule] = Field(
        default_factory=lambda: dict(DEFAULT_QUOTAS),
        description="Default ceilings per action type",
    )
    warning_ratio: float = Field(
        default=0.8,
        gt=0,
        le=1,
        description="Usage ratio at which a quota is reported as WARNING",
    )
    recognition_actions: list[str] = Field(
        default_factory=lambda: ["recognitions_per_day", "recognitions_per_month"],
        description="Quota actions consumed by recognition creation",
    )
