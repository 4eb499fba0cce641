"""Kudos: write-path control plane for peer recognitions.

Kudos guards the "create a recognition" mutation with idempotent replay,
fixed-window rate limiting, organization quotas, abuse scoring, circuit
breakers around external channels, and a durable job queue for deferred
side effects.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
