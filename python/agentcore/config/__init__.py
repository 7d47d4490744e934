"""Engine configuration."""

from agentcore.config.settings import PricingOverride, Settings, get_settings

__all__ = ["PricingOverride", "Settings", "get_settings"]
