"""HTTP adapter for the recognition control plane."""

from kudos.api.app import create_app

__all__ = ["create_app"]
