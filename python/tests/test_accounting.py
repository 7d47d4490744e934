"""Tests for pricing, budgets and per-agent rate limits (agentcore/accounting)."""

import pytest

from agentcore.accounting import (
    BudgetTracker,
    CostCalculator,
    CustomPricing,
    ModelPricing,
    RateLimitConfig,
    RateLimiter,
    provider_family,
    round_cost,
)
from agentcore.exceptions import BudgetExceeded, RateLimitExceeded


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def calculator():
    return CostCalculator()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(clock=clock)


# --- Pricing ---


class TestPricing:
    """Model price resolution."""

    def test_exact_match(self, calculator):
        assert calculator.get_pricing("gpt-4o") == ModelPricing(5.0, 15.0)

    def test_longest_prefix_wins(self, calculator):
        # both gpt-4 and gpt-4o are prefixes; the longer one applies
        assert calculator.get_pricing("gpt-4o-2024-05-13") == ModelPricing(5.0, 15.0)
        assert calculator.get_pricing("claude-3-opus-20240229").input_cost_per_1m_tokens == 15.0

    def test_unknown_model_uses_default(self, calculator, caplog):
        import logging
        with caplog.at_level(logging.WARNING):
            pricing = calculator.get_pricing("mystery-model")
        assert pricing == ModelPricing(1.0, 2.0)
        assert "No pricing found" in caplog.text

    def test_set_pricing_overrides_table(self, calculator):
        calculator.set_pricing("gpt-4o", ModelPricing(1.0, 1.0))
        assert calculator.calculate_cost("gpt-4o", 1_000_000, 0).total_cost == 1.0

    def test_custom_table_replaces_defaults(self):
        calc = CostCalculator({"local": ModelPricing(0.0, 0.0)}, default_pricing=ModelPricing(3.0, 3.0))
        assert calc.get_pricing("gpt-4o") == ModelPricing(3.0, 3.0)


class TestCostComputation:
    def test_calculate_cost(self, calculator):
        cost = calculator.calculate_cost("gpt-4o", 1000, 500)
        # 1000/1M * 5 + 500/1M * 15 = 0.005 + 0.0075
        assert cost.input_cost == pytest.approx(0.005)
        assert cost.output_cost == pytest.approx(0.0075)
        assert cost.total_cost == pytest.approx(0.0125)
        assert cost.currency == "USD"

    def test_custom_pricing_per_token(self, calculator):
        custom = CustomPricing(cost_per_input_token=0.001, cost_per_output_token=0.002)
        cost = calculator.calculate_cost("gpt-4o", 10, 10, custom)
        assert cost.total_cost == pytest.approx(0.03)

    def test_rounding_to_six_decimals(self):
        assert round_cost(0.0000004) == 0.0
        assert round_cost(0.0000005) == 0.000001
        assert round_cost(1.23456789) == 1.234568

    def test_zero_tokens_cost_nothing(self, calculator):
        assert calculator.calculate_cost("gpt-4", 0, 0).total_cost == 0.0

    def test_cache_savings_match_full_cost(self, calculator):
        assert calculator.calculate_cache_savings("gpt-4", 1000, 1000) == pytest.approx(0.09)


class TestBudgetHelpers:
    def test_would_exceed_budget(self):
        assert CostCalculator.would_exceed_budget(0.6, 0.5, 1.0) is True
        assert CostCalculator.would_exceed_budget(0.5, 0.5, 1.0) is False

    def test_usage_and_remaining(self):
        assert CostCalculator.calculate_budget_usage(2.5, 10.0) == 25.0
        assert CostCalculator.calculate_budget_usage(1.0, 0.0) == 0.0
        assert CostCalculator.get_remaining_budget(12.0, 10.0) == 0.0

    def test_provider_costs(self):
        totals = CostCalculator.get_provider_costs([
            {"model": "gpt-4o", "cost": 0.1},
            {"model": "gpt-3.5-turbo", "cost": 0.2},
            {"model": "claude-3-haiku", "cost": 0.05},
            {"model": "llama-3", "cost": 0.01},
        ])
        assert totals == {"OpenAI": pytest.approx(0.3), "Anthropic": 0.05, "Custom": 0.01}

    def test_provider_family(self):
        assert provider_family("gemini-pro") == "Google"
        assert provider_family("mistral") == "Custom"

    def test_format_cost(self):
        assert CostCalculator.format_cost(1.5) == "$1.50"
        assert CostCalculator.format_cost(0.0012) == "$0.001200"
        assert CostCalculator.format_cost(2.0, "EUR") == "EUR 2.00"


# --- Budget tracking ---


class TestBudgetTracker:
    def test_no_limit_never_denies(self, calculator):
        tracker = BudgetTracker(calculator)
        tracker.record("a1", "gpt-4o", 100.0)
        tracker.check("a1", 1000.0)

    def test_denies_when_estimate_crosses_limit(self, calculator):
        tracker = BudgetTracker(calculator)
        tracker.set_limit("a1", 1.0)
        tracker.record("a1", "gpt-4o", 0.9)
        with pytest.raises(BudgetExceeded) as exc_info:
            tracker.check("a1", 0.2, execution_id="e1")
        assert exc_info.value.details["limit"] == 1.0
        assert exc_info.value.execution_id == "e1"

    def test_spend_accumulates_per_agent(self, calculator):
        tracker = BudgetTracker(calculator)
        tracker.record("a1", "gpt-4o", 0.25)
        tracker.record("a1", "claude-3-haiku", 0.25)
        tracker.record("a2", "gpt-4o", 1.0)
        assert tracker.get_spend("a1") == 0.5
        assert tracker.get_spend("a2") == 1.0

    def test_status_reports_usage(self, calculator):
        tracker = BudgetTracker(calculator)
        tracker.set_limit("a1", 2.0)
        tracker.record("a1", "gpt-4o", 0.5)
        status = tracker.get_status("a1")
        assert status["usage_percent"] == 25.0
        assert status["remaining"] == 1.5
        assert status["provider_costs"] == {"OpenAI": 0.5}

    def test_clearing_limit(self, calculator):
        tracker = BudgetTracker(calculator)
        tracker.set_limit("a1", 0.1)
        tracker.set_limit("a1", None)
        tracker.check("a1", 5.0)
        assert tracker.get_status("a1")["limit"] is None


# --- Rate limiting ---


class TestRateLimiter:
    async def test_disabled_config_always_allows(self, limiter):
        config = RateLimitConfig(enabled=False, requests_per_minute=1)
        for _ in range(5):
            result = await limiter.acquire("a1", config)
            assert result.allowed

    async def test_minute_window(self, limiter, clock):
        config = RateLimitConfig(requests_per_minute=2)
        first = await limiter.acquire("a1", config)
        assert first.remaining == 2
        await limiter.acquire("a1", config)
        with pytest.raises(RateLimitExceeded) as exc_info:
            await limiter.acquire("a1", config)
        assert exc_info.value.reset_at is not None

        clock.advance(60)
        assert (await limiter.acquire("a1", config)).allowed

    async def test_tightest_window_reported_as_remaining(self, limiter):
        config = RateLimitConfig(requests_per_minute=10, requests_per_hour=3)
        result = await limiter.check_rate_limit("a1", config)
        assert result.remaining == 3

    async def test_max_tokens_per_request(self, limiter):
        config = RateLimitConfig(max_tokens_per_request=100)
        with pytest.raises(RateLimitExceeded, match="max tokens"):
            await limiter.acquire("a1", config, estimated_tokens=101)
        assert (await limiter.acquire("a1", config, estimated_tokens=100)).allowed

    async def test_concurrency_slot_released_on_exit(self, limiter):
        config = RateLimitConfig(max_concurrent_requests=1)
        async with limiter.reserve("a1", config):
            assert limiter.active_requests("a1") == 1
            with pytest.raises(RateLimitExceeded, match="concurrent"):
                await limiter.acquire("a1", config)
        assert limiter.active_requests("a1") == 0

    async def test_slot_released_when_body_raises(self, limiter):
        config = RateLimitConfig(max_concurrent_requests=1)
        with pytest.raises(RuntimeError):
            async with limiter.reserve("a1", config):
                raise RuntimeError("provider exploded")
        assert limiter.active_requests("a1") == 0

    async def test_agents_are_independent(self, limiter):
        config = RateLimitConfig(requests_per_minute=1)
        await limiter.acquire("a1", config)
        assert (await limiter.acquire("a2", config)).allowed

    async def test_status_and_reset(self, limiter):
        config = RateLimitConfig(requests_per_minute=5)
        await limiter.acquire("a1", config)
        with pytest.raises(RateLimitExceeded):
            await limiter.acquire("a1", RateLimitConfig(requests_per_minute=1))

        status = await limiter.get_rate_limit_status("a1", config)
        assert status["windows"]["minute"]["used"] == 1
        assert status["windows"]["minute"]["remaining"] == 4
        assert status["total_allowed"] == 1
        assert status["total_rejected"] == 1

        await limiter.reset("a1")
        status = await limiter.get_rate_limit_status("a1", config)
        assert status["windows"]["minute"]["used"] == 0
