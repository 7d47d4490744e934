"""Cost and rate accounting: pricing, budgets, per-agent rate limits."""

from agentcore.accounting.budget_tracker import BudgetTracker, SpendRecord
from agentcore.accounting.cost_calculator import (
    DEFAULT_FALLBACK_PRICING,
    DEFAULT_PRICING_TABLE,
    CostBreakdown,
    CostCalculator,
    CustomPricing,
    ModelPricing,
    provider_family,
    round_cost,
)
from agentcore.accounting.rate_limiter import RateLimitConfig, RateLimiter, RateLimitResult

__all__ = [
    "BudgetTracker",
    "CostBreakdown",
    "CostCalculator",
    "CustomPricing",
    "DEFAULT_FALLBACK_PRICING",
    "DEFAULT_PRICING_TABLE",
    "ModelPricing",
    "RateLimitConfig",
    "RateLimitResult",
    "RateLimiter",
    "SpendRecord",
    "provider_family",
    "round_cost",
]
