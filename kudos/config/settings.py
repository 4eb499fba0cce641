"""Root settings model for Kudos configuration."""

from typing import Any, Literal

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from kudos.config.models.abuse import AbuseConfig, RecognitionConfig, ScoringConfig
from kudos.config.models.admission import IdempotencyConfig, QuotaConfig, RateLimitConfig
from kudos.config.models.api import APIConfig
from kudos.config.models.jobs import JobsConfig, NotificationsConfig
from kudos.config.models.observability import ObservabilityConfig
from kudos.config.models.resilience import BreakersConfig
from kudos.config.models.storage import StorageConfig

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# TOML configuration consumed by the custom settings source
_toml_config: dict[str, Any] = {}


def set_toml_config(config: dict[str, Any]) -> None:
    """Set the TOML configuration to be used by Settings."""
    global _toml_config
    _toml_config = config


class TomlConfigSettingsSource(PydanticBaseSettingsSource):
    """Settings source that reads from the loaded TOML configuration."""

    def get_field_value(
        self, field: Any, field_name: str  # noqa: ARG002
    ) -> tuple[Any, str, bool]:
        value = _toml_config.get(field_name)
        return value, field_name, value is not None

    def __call__(self) -> dict[str, Any]:
        return _toml_config.copy()


class Settings(BaseSettings):
    """Root configuration object containing all nested sections.

    Configuration is loaded in this order:
    1. Pydantic model defaults (in code)
    2. config/default.toml (base configuration)
    3. config/{KUDOS_ENV}.toml (environment overrides)
    4. KUDOS_* environment variables (runtime overrides)
    """

    model_config = SettingsConfigDict(
        env_prefix="KUDOS_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="kudos", description="Application name for logging")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: LogLevel = Field(default="INFO", description="Logging level")

    storage: StorageConfig = Field(default_factory=StorageConfig)
    idempotency: IdempotencyConfig = Field(default_factory=IdempotencyConfig)
    rate_limits: RateLimitConfig = Field(default_factory=RateLimitConfig)
    quotas: QuotaConfig = Field(default_factory=QuotaConfig)
    breakers: BreakersConfig = Field(default_factory=BreakersConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    abuse: AbuseConfig = Field(default_factory=AbuseConfig)
    recognition: RecognitionConfig = Field(default_factory=RecognitionConfig)
    jobs: JobsConfig = Field(default_factory=JobsConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        file_secret_settings: PydanticBaseSettingsSource,  # noqa: ARG003
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority (highest first): init args, KUDOS_* env vars, TOML."""
        return (
            init_settings,
            env_settings,
            TomlConfigSettingsSource(settings_cls),
        )
