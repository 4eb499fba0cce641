"""API test fixtures."""

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from kudos.api.app import create_app
from kudos.api.dependencies import set_control_plane
from kudos.bootstrap import ControlPlane

ACTOR_HEADERS = {
    "X-Actor-ID": "alice",
    "X-Organization-ID": "org-1",
    "X-Actor-Role": "user",
}


@pytest.fixture
def client(control_plane: ControlPlane) -> Generator[TestClient, None, None]:
    """Test client bound to the shared test control plane (no lifespan)."""
    yield TestClient(create_app(control_plane))
    set_control_plane(None)


@pytest.fixture
def headers() -> dict[str, str]:
    return dict(ACTOR_HEADERS)
