"""Tests for the price-table pricing oracle."""

import logging
from decimal import Decimal

import pytest

from creditledger.contracts import ProviderCost, TokenUsage
from creditledger.core import ModelPricing, PriceTableOracle
from creditledger.errors import UnknownModel


@pytest.fixture
def oracle() -> PriceTableOracle:
    return PriceTableOracle(
        {
            "plain": ModelPricing(input=Decimal("1"), output=Decimal("2")),
            "tiered": ModelPricing(
                input=Decimal("3"),
                output=Decimal("15"),
                reasoning=Decimal("10"),
                cached_input=Decimal("0.3"),
            ),
        }
    )


class TestPriceTableOracle:
    """Test token and provider cost conversion."""

    def test_prompt_and_completion_tokens(self, oracle: PriceTableOracle) -> None:
        """Test cost is tokens times per-million price."""
        usage = TokenUsage(model="plain", prompt_tokens=1_000, completion_tokens=500)
        assert oracle.cost_of(usage) == 1_000 * 1_000 + 500 * 2_000

    def test_cached_and_reasoning_prices(self, oracle: PriceTableOracle) -> None:
        """Test cached prompt tokens and reasoning tokens use their own prices."""
        usage = TokenUsage(
            model="tiered",
            prompt_tokens=1_000,
            cached_prompt_tokens=400,
            completion_tokens=100,
            reasoning_tokens=50,
        )
        expected = 600 * 3_000 + 400 * 300 + 100 * 15_000 + 50 * 10_000
        assert oracle.cost_of(usage) == expected

    def test_missing_tier_prices_fall_back(self, oracle: PriceTableOracle) -> None:
        """Test models without cached or reasoning prices bill at input and output rates."""
        usage = TokenUsage(model="plain", prompt_tokens=10, cached_prompt_tokens=10, reasoning_tokens=10)
        assert oracle.cost_of(usage) == 10 * 1_000 + 10 * 2_000

    def test_fractional_cost_rounds_up(self) -> None:
        """Test sub-nano costs round up to the next nano-unit."""
        oracle = PriceTableOracle({"cheap": ModelPricing(input=Decimal("0.0001"), output=Decimal("0"))})
        assert oracle.cost_of(TokenUsage(model="cheap", prompt_tokens=1)) == 1

    def test_provider_cost(self, oracle: PriceTableOracle) -> None:
        """Test provider-reported amounts are converted directly."""
        assert oracle.cost_of(ProviderCost(amount_usd=Decimal("0.0015"))) == 1_500_000

    def test_negative_provider_cost_clamped(
        self, oracle: PriceTableOracle, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test negative provider costs are clamped to zero with a warning."""
        caplog.set_level(logging.WARNING)
        assert oracle.cost_of(ProviderCost(amount_usd=Decimal("-0.01"))) == 0
        assert any("Negative cost" in r.message for r in caplog.records)

    def test_unknown_model(self, oracle: PriceTableOracle) -> None:
        """Test a model without prices raises UnknownModel."""
        with pytest.raises(UnknownModel) as exc_info:
            oracle.cost_of(TokenUsage(model="mystery", prompt_tokens=1))
        assert exc_info.value.model == "mystery"
