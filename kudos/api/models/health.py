"""Health check response models."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from kudos.breaker.models import RegistryHealth


class ComponentHealth(BaseModel):
    """Health of a single component."""

    name: str
    status: Literal["healthy", "degraded", "unhealthy"]
    latency_ms: float | None = None
    message: str | None = None


class HealthResponse(BaseModel):
    """Overall service health."""

    status: Literal["healthy", "degraded", "unhealthy"]
    version: str
    components: list[ComponentHealth]
    breakers: RegistryHealth
    timestamp: datetime
