"""Typed configuration sections."""

from kudos.config.models.abuse import AbuseConfig, RecognitionConfig, ScoringConfig
from kudos.config.models.admission import (
    IdempotencyConfig,
    QuotaConfig,
    QuotaRule,
    RateLimitConfig,
    RateLimitRule,
)
from kudos.config.models.api import APIConfig
from kudos.config.models.jobs import ChannelConfig, JobsConfig, NotificationsConfig
from kudos.config.models.observability import ObservabilityConfig
from kudos.config.models.resilience import BreakerConfig, BreakersConfig
from kudos.config.models.storage import StorageConfig

__all__ = [
    "APIConfig",
    "AbuseConfig",
    "BreakerConfig",
    "BreakersConfig",
    "ChannelConfig",
    "IdempotencyConfig",
    "JobsConfig",
    "NotificationsConfig",
    "ObservabilityConfig",
    "QuotaConfig",
    "QuotaRule",
    "RateLimitConfig",
    "RateLimitRule",
    "RecognitionConfig",
    "ScoringConfig",
    "StorageConfig",
]
