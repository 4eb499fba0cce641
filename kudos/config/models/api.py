"""API server configuration."""

from pydantic import BaseModel, Field


class APIConfig(BaseModel):
    """HTTP adapter configuration."""

    host: str = Field(default="0.0.0.0", description="Host to bind to")
    port: int = Field(default=8000, ge=1, le=65535, description="Port to listen on")
    cors_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Allowed CORS origins",
    )
