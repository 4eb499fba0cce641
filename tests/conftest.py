"""Shared test fixtures for the Kudos test suite."""

import os
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest

from kudos.audit.sink import AuditSink
from kudos.bootstrap import ControlPlane, build_control_plane
from kudos.config.settings import Settings
from kudos.storage.stores.inmemory import InMemoryDocumentStore
from tests.helpers.fake_clock import FakeClock
from tests.helpers.stores import YieldingStore


@pytest.fixture
def test_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory for testing."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def mock_toml_files(test_config_dir: Path) -> Callable[[dict[str, str]], None]:
    """Factory fixture to create TOML files in the test config directory.

    Usage:
        def test_something(mock_toml_files):
            mock_toml_files({
                "default.toml": "app_name = 'test'",
                "development.toml": "debug = true",
            })
    """

    def _create_toml_files(files: dict[str, str]) -> None:
        for filename, content in files.items():
            (test_config_dir / filename).write_text(content)

    return _create_toml_files


class EnvOverrideContext:
    """Context manager for temporarily setting environment variables."""

    def __init__(self, overrides: dict[str, str]) -> None:
        self.overrides = overrides
        self.original_env: dict[str, str | None] = {}

    def __enter__(self) -> None:
        for key, value in self.overrides.items():
            self.original_env[key] = os.environ.get(key)
            os.environ[key] = value

    def __exit__(self, *args: Any) -> None:
        for key in self.overrides:
            original = self.original_env[key]
            if original is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = original


@pytest.fixture
def env_override() -> Generator[Callable[[dict[str, str]], EnvOverrideContext], None, None]:
    """Context manager for temporarily setting environment variables.

    Usage:
        def test_something(env_override):
            with env_override({"KUDOS_DEBUG": "true"}):
                ...
    """

    def _env_override(overrides: dict[str, str]) -> EnvOverrideContext:
        return EnvOverrideContext(overrides)

    yield _env_override


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Generator[None, None, None]:
    """Clear the settings cache before and after each test."""
    from kudos.config import get_settings
    from kudos.config.settings import set_toml_config

    get_settings.cache_clear()
    set_toml_config({})
    yield
    get_settings.cache_clear()
    set_toml_config({})


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryDocumentStore:
    return InMemoryDocumentStore(clock=clock)


@pytest.fixture
def racing_store(store: InMemoryDocumentStore) -> YieldingStore:
    """Store that interleaves concurrent coroutines between operations."""
    return YieldingStore(store)


@pytest.fixture
def audit(store: InMemoryDocumentStore, clock: FakeClock) -> AuditSink:
    return AuditSink(store, clock)


@pytest.fixture
def settings() -> Settings:
    """Settings built from code defaults only, with background loops off."""
    return Settings(jobs={"run_worker": False})


@pytest.fixture
def control_plane(
    settings: Settings, clock: FakeClock, store: InMemoryDocumentStore
) -> ControlPlane:
    return build_control_plane(settings, clock=clock, store=store)
