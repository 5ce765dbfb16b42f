"""Conversion of usage into nano-unit amounts."""

import logging
from decimal import Decimal
from typing import Protocol

from pydantic import BaseModel, Field

from creditledger.contracts.models import ProviderCost, TokenUsage
from creditledger.core.money import units_to_nano
from creditledger.errors import UnknownModel

logger = logging.getLogger(__name__)

TOKENS_PER_PRICE_UNIT = 1_000_000


class PricingOracle(Protocol):
    """Converts usage into an integer nano-unit cost."""

    def cost_of(self, usage: TokenUsage | ProviderCost) -> int:
        ...


class ModelPricing(BaseModel):
    """Per-million-token prices for one model, in base currency units."""

    input: Decimal = Field(ge=0)
    output: Decimal = Field(ge=0)
    reasoning: Decimal | None = Field(default=None, ge=0)
    cached_input: Decimal | None = Field(default=None, ge=0)

    model_config = {"extra": "forbid"}


class PriceTableOracle:
    """PricingOracle backed by a caller-supplied price table.

    Costs are rounded up to the next nano-unit exactly once, here. Prompt
    token counts include cached tokens; cached tokens are billed at the
    cached price when one is configured.
    """

    def __init__(self, prices: dict[str, ModelPricing]) -> None:
        self._prices = dict(prices)

    def cost_of(self, usage: TokenUsage | ProviderCost) -> int:
        if isinstance(usage, ProviderCost):
            amount = usage.amount_usd
            context = {"generation_id": usage.generation_id}
        else:
            amount = self._token_cost(usage)
            context = {"model": usage.model}

        if amount < 0:
            logger.warning("Negative cost clamped to 0: amount=%s context=%s", amount, context)
            return 0
        return units_to_nano(amount)

    def _token_cost(self, usage: TokenUsage) -> Decimal:
        pricing = self._prices.get(usage.model)
        if pricing is None:
            raise UnknownModel(usage.model)

        cached = min(usage.cached_prompt_tokens, usage.prompt_tokens)
        uncached = usage.prompt_tokens - cached
        cached_price = pricing.cached_input if pricing.cached_input is not None else pricing.input
        reasoning_price = pricing.reasoning if pricing.reasoning is not None else pricing.output

        total = (
            uncached * pricing.input
            + cached * cached_price
            + usage.completion_tokens * pricing.output
            + usage.reasoning_tokens * reasoning_price
        )
        return total / TOKENS_PER_PRICE_UNIT
