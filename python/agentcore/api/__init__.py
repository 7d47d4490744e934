"""HTTP API for the engine."""

from agentcore.api.app import create_app

__all__ = ["create_app"]
