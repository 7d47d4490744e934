"""Model pricing and cost computation for LLM executions.

Prices are USD per 1M tokens. Lookup order for a model name:
custom (per-agent) pricing, exact match, longest known prefix, then the
default fallback price (logged, since it usually means a missing row).
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, Mapping, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelPricing:
    input_cost_per_1m_tokens: float
    output_cost_per_1m_tokens: float
    currency: str = "USD"


@dataclass(frozen=True)
class CustomPricing:
    """Per-agent override expressed per single token."""
    cost_per_input_token: float
    cost_per_output_token: float
    currency: str = "USD"

    def to_model_pricing(self) -> ModelPricing:
        return ModelPricing(
            input_cost_per_1m_tokens=self.cost_per_input_token * 1_000_000,
            output_cost_per_1m_tokens=self.cost_per_output_token * 1_000_000,
            currency=self.currency,
        )


@dataclass(frozen=True)
class CostBreakdown:
    input_cost: float
    output_cost: float
    total_cost: float
    currency: str = "USD"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "input_cost": self.input_cost,
            "output_cost": self.output_cost,
            "total_cost": self.total_cost,
            "currency": self.currency,
        }


DEFAULT_PRICING_TABLE: Dict[str, ModelPricing] = {
    # OpenAI
    "gpt-4": ModelPricing(30.0, 60.0),
    "gpt-4-32k": ModelPricing(60.0, 120.0),
    "gpt-4-turbo": ModelPricing(10.0, 30.0),
    "gpt-4o": ModelPricing(5.0, 15.0),
    "gpt-3.5-turbo": ModelPricing(0.5, 1.5),
    "gpt-3.5-turbo-16k": ModelPricing(3.0, 4.0),
    # Anthropic
    "claude-3-opus": ModelPricing(15.0, 75.0),
    "claude-3-sonnet": ModelPricing(3.0, 15.0),
    "claude-3-haiku": ModelPricing(0.25, 1.25),
    # Google
    "gemini-pro": ModelPricing(0.5, 1.5),
}

DEFAULT_FALLBACK_PRICING = ModelPricing(1.0, 2.0)

# Provider family by model-name prefix, for spend breakdowns
PROVIDER_FAMILIES = (
    ("gpt-", "OpenAI"),
    ("claude-", "Anthropic"),
    ("gemini-", "Google"),
)


def round_cost(value: float) -> float:
    """Round to 6 decimals, half-up on the value scaled by 1e6."""
    scaled = Decimal(repr(value)) * Decimal(1_000_000)
    return float(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP) / Decimal(1_000_000))


def provider_family(model: str) -> str:
    for prefix, family in PROVIDER_FAMILIES:
        if model.startswith(prefix):
            return family
    return "Custom"


class CostCalculator:
    """Computes per-execution cost from a pricing table passed in at construction."""

    def __init__(
        self,
        pricing_table: Optional[Mapping[str, ModelPricing]] = None,
        default_pricing: ModelPricing = DEFAULT_FALLBACK_PRICING,
    ) -> None:
        self._pricing: Dict[str, ModelPricing] = dict(
            DEFAULT_PRICING_TABLE if pricing_table is None else pricing_table
        )
        self.default_pricing = default_pricing

    # ── Pricing table ────────────────────────────────────────────────

    def get_pricing(self, model: str) -> ModelPricing:
        """Resolve pricing: exact match, longest prefix, then default."""
        exact = self._pricing.get(model)
        if exact is not None:
            return exact

        best_prefix = max(
            (name for name in self._pricing if model.startswith(name)),
            key=len,
            default=None,
        )
        if best_prefix is not None:
            return self._pricing[best_prefix]

        logger.warning("No pricing found for model %s, using default pricing", model)
        return self.default_pricing

    def set_pricing(self, model: str, pricing: ModelPricing) -> None:
        self._pricing[model] = pricing

    @property
    def pricing_table(self) -> Dict[str, ModelPricing]:
        return dict(self._pricing)

    # ── Cost computation ─────────────────────────────────────────────

    def calculate_cost(
        self,
        model: str,
        input_tokens: int,
        output_tokens: int,
        custom_pricing: Optional[CustomPricing] = None,
    ) -> CostBreakdown:
        pricing = custom_pricing.to_model_pricing() if custom_pricing else self.get_pricing(model)

        input_cost = (input_tokens / 1_000_000) * pricing.input_cost_per_1m_tokens
        output_cost = (output_tokens / 1_000_000) * pricing.output_cost_per_1m_tokens

        return CostBreakdown(
            input_cost=round_cost(input_cost),
            output_cost=round_cost(output_cost),
            total_cost=round_cost(input_cost + output_cost),
            currency=pricing.currency,
        )

    def calculate_cache_savings(self, model: str, input_tokens: int, output_tokens: int) -> float:
        """Cost a cache hit avoided.

        Re-runs the full calculation on the cached token counts, i.e. this is
        "what re-executing would cost" rather than a billed amount.
        """
        return self.calculate_cost(model, input_tokens, output_tokens).total_cost

    # ── Budget helpers (pure) ────────────────────────────────────────

    @staticmethod
    def would_exceed_budget(cost: float, current_spend: float, limit: float) -> bool:
        return current_spend + cost > limit

    @staticmethod
    def calculate_budget_usage(current_spend: float, limit: float) -> float:
        """Percentage of *limit* used. Can exceed 100; callers clamp for display."""
        if limit <= 0:
            return 0.0
        return (current_spend / limit) * 100

    @staticmethod
    def get_remaining_budget(current_spend: float, limit: float) -> float:
        return max(0.0, limit - current_spend)

    # ── Reporting ────────────────────────────────────────────────────

    @staticmethod
    def get_provider_costs(records: Iterable[Mapping[str, Any]]) -> Dict[str, float]:
        """Sum ``cost`` per provider family from records carrying ``model`` and ``cost``."""
        totals: Dict[str, float] = {}
        for record in records:
            family = provider_family(str(record.get("model", "")))
            totals[family] = totals.get(family, 0.0) + float(record.get("cost", 0.0) or 0.0)
        return {k: round_cost(v) for k, v in totals.items()}

    @staticmethod
    def format_cost(cost: float, currency: str = "USD") -> str:
        symbol = "$" if currency == "USD" else f"{currency} "
        if cost < 0.01:
            return f"{symbol}{cost:.6f}"
        return f"{symbol}{cost:.2f}"
