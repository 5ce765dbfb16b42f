"""Canonical enum definitions for the credit ledger."""

from enum import Enum


class TransactionSource(str, Enum):
    """Metered action that originated a ledger entry."""

    EMBEDDING_GENERATION = "embedding-generation"
    TEXT_GENERATION = "text-generation"
    TOOL_EXECUTION = "tool-execution"


class Supplier(str, Enum):
    """Upstream cost driver."""

    OPENROUTER = "openrouter"
    TAVILY = "tavily"
    EXA = "exa"


class ReservationSentinel(str, Enum):
    """Reservation ids meaning no workspace charge applies."""

    BYOK = "byok"
    ZERO_COST = "zero-cost"


class LimitScope(str, Enum):
    """Who a spending limit applies to."""

    WORKSPACE = "workspace"
    AGENT = "agent"


class LimitTimeFrame(str, Enum):
    """Rolling window of a spending limit."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
