"""Job queue, worker, and notification channel configuration."""

from croniter import croniter
from pydantic import BaseModel, Field, SecretStr, field_validator


class ScheduleConfig(BaseModel):
    """Cron expressions (UTC) for periodic maintenance jobs; an empty string disables one."""

    idempotency_sweep_cron: str = Field(default="0 * * * *")
    rate_limit_sweep_cron: str = Field(default="5 * * * *")
    quota_hourly_reset_cron: str = Field(default="0 * * * *")
    quota_daily_reset_cron: str = Field(default="0 0 * * *")
    quota_monthly_reset_cron: str = Field(default="0 0 1 * *")
    job_cleanup_cron: str = Field(default="0 3 * * *")

    @field_validator("*")
    @classmethod
    def validate_cron(cls, value: str) -> str:
        if value and not croniter.is_valid(value):
            raise ValueError(f"Invalid cron expression: {value!r}")
        return value


class JobsConfig(BaseModel):
    """Durable job queue configuration."""

    run_worker: bool = Field(
        default=True,
        description="Run the job worker and scheduler inside the API process",
    )
    poll_interval_seconds: float = Field(default=5.0, gt=0)
    lease_seconds: int = Field(
        default=300,
        gt=0,
        description="How long a worker owns a claimed job before it can be reclaimed",
    )
    job_timeout_seconds: float = Field(default=120.0, gt=0)
    default_max_retries: int = Field(default=3, ge=0, le=20)
    backoff_base_seconds: float = Field(default=30.0, ge=0)
    backoff_max_seconds: float = Field(default=3600.0, ge=0)
    completed_retention_days: int = Field(default=7, ge=0)
    dequeue_scan_limit: int = Field(
        default=50,
        gt=0,
        description="Candidates examined per dequeue attempt",
    )
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)


class ChannelConfig(BaseModel):
    """A single outbound notification channel."""

    enabled: bool = Field(default=False)
    webhook_url: SecretStr | None = Field(
        default=None,
        description="Incoming webhook URL (from env var)",
    )
    timeout_seconds: float = Field(default=5.0, gt=0)


class NotificationsConfig(BaseModel):
    """Outbound notification channels keyed by breaker dependency name."""

    channels: dict[str, ChannelConfig] = Field(
        default_factory=lambda: {
            "slack": ChannelConfig(),
            "teams": ChannelConfig(),
            "email": ChannelConfig(),
        }
    )
