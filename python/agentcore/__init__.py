"""Agent execution and orchestration engine."""

__version__ = "0.1.0"
