"""Document store configuration."""

from typing import Literal

from pydantic import BaseModel, Field

BackendType = Literal["inmemory", "redis"]


class StorageConfig(BaseModel):
    """Document store backend configuration."""

    backend: BackendType = Field(default="inmemory", description="Backend type")
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL (redis backend only)",
    )
    key_prefix: str = Field(default="kudos", description="Prefix for Redis keys")
    operation_timeout_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Upper bound for a single store operation",
    )
    cas_max_attempts: int = Field(
        default=8,
        ge=1,
        le=100,
        description="Conditional-write attempts before surfacing a conflict",
    )
