"""Pydantic v2 models exchanged between ledger components."""

from decimal import Decimal

from pydantic import BaseModel, Field

from creditledger.contracts.enums import (
    LimitScope,
    LimitTimeFrame,
    ReservationSentinel,
    Supplier,
    TransactionSource,
)


class BaseContractModel(BaseModel):
    """Base model for all contracts."""

    model_config = {"extra": "forbid", "frozen": False}


class LedgerEntry(BaseContractModel):
    """One signed monetary change destined for a workspace balance.

    Amounts are integer nano-units. Negative values debit the workspace,
    positive values credit it.
    """

    workspace_id: str
    agent_id: str | None = None
    conversation_id: str | None = None
    source: TransactionSource
    supplier: Supplier
    model: str | None = None
    tool_call: str | None = None
    description: str
    amount: int


class CostContext(BaseContractModel):
    """Attribution for a metered operation about to run."""

    agent_id: str | None = None
    conversation_id: str | None = None
    source: TransactionSource = TransactionSource.TEXT_GENERATION
    supplier: Supplier = Supplier.OPENROUTER
    model: str | None = None
    tool_call: str | None = None
    byok: bool = False


class TokenUsage(BaseContractModel):
    """Token counts reported by a model call."""

    model: str
    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    reasoning_tokens: int = Field(default=0, ge=0)
    cached_prompt_tokens: int = Field(default=0, ge=0)


class ProviderCost(BaseContractModel):
    """Cost reported by the upstream provider, in base currency units."""

    amount_usd: Decimal
    generation_id: str | None = None


class SpendingLimit(BaseContractModel):
    """Cap on net spend over a rolling window."""

    time_frame: LimitTimeFrame
    amount: int = Field(ge=0)


class FailedLimit(BaseContractModel):
    """A spending limit that an estimated cost would breach."""

    scope: LimitScope
    time_frame: LimitTimeFrame
    limit: int
    current_spending: int


class LimitCheckResult(BaseContractModel):
    """Outcome of a spending limit check."""

    passed: bool
    failed_limits: list[FailedLimit] = Field(default_factory=list)


class ReservationHandle(BaseContractModel):
    """Caller-side handle for a reservation or a sentinel."""

    reservation_id: str
    reserved_amount: int = 0
    workspace_id: str
    agent_id: str | None = None
    conversation_id: str | None = None

    @property
    def is_sentinel(self) -> bool:
        return is_sentinel(self.reservation_id)


def is_sentinel(reservation_id: str) -> bool:
    """True if reservation_id is one of the no-charge sentinels."""
    return reservation_id in {s.value for s in ReservationSentinel}
