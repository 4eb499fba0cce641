"""Dependency injection for API routes.

The control plane is built once per process from settings and shared by
every request. Tests install their own with set_control_plane.
"""

from typing import Annotated

from fastapi import Depends, Header
from pydantic import BaseModel

from kudos.bootstrap import ControlPlane, build_control_plane
from kudos.config import get_settings
from kudos.observability.logging import get_logger

logger = get_logger(__name__)

_control_plane: ControlPlane | None = None


def get_control_plane() -> ControlPlane:
    """Get the shared control plane, building it on first access."""
    global _control_plane
    if _control_plane is None:
        _control_plane = build_control_plane(get_settings())
    return _control_plane


def set_control_plane(control_plane: ControlPlane | None) -> None:
    """Install a pre-built control plane (or clear it with None)."""
    global _control_plane
    _control_plane = control_plane


async def reset_dependencies() -> None:
    """Close and drop the shared control plane."""
    global _control_plane
    if _control_plane is not None:
        await _control_plane.close()
        _control_plane = None
        logger.info("dependencies_reset")


class ActorContext(BaseModel):
    """Caller identity forwarded by the upstream gateway."""

    actor_id: str
    organization_id: str | None = None
    role: str = "USER"
    source: str = "api"


def get_actor_context(
    x_actor_id: Annotated[str, Header(min_length=1)],
    x_organization_id: Annotated[str | None, Header()] = None,
    x_actor_role: Annotated[str | None, Header()] = None,
    x_source: Annotated[str | None, Header()] = None,
) -> ActorContext:
    return ActorContext(
        actor_id=x_actor_id,
        organization_id=x_organization_id,
        role=(x_actor_role or "USER").upper(),
        source=x_source or "api",
    )


def get_idempotency_key(
    idempotency_key: Annotated[str | None, Header()] = None,
    x_idempotency_key: Annotated[str | None, Header()] = None,
) -> str | None:
    """Client token from Idempotency-Key, falling back to X-Idempotency-Key."""
    return idempotency_key or x_idempotency_key or None


# Type aliases for dependency injection
ControlPlaneDep = Annotated[ControlPlane, Depends(get_control_plane)]
ActorDep = Annotated[ActorContext, Depends(get_actor_context)]
IdempotencyKeyDep = Annotated[str | None, Depends(get_idempotency_key)]
