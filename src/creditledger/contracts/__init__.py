"""Canonical contracts for the credit ledger."""

from creditledger.contracts.enums import (
    LimitScope,
    LimitTimeFrame,
    ReservationSentinel,
    Supplier,
    TransactionSource,
)
from creditledger.contracts.models import (
    CostContext,
    FailedLimit,
    LedgerEntry,
    LimitCheckResult,
    ProviderCost,
    ReservationHandle,
    SpendingLimit,
    TokenUsage,
    is_sentinel,
)

__all__ = [
    "CostContext",
    "FailedLimit",
    "LedgerEntry",
    "LimitCheckResult",
    "LimitScope",
    "LimitTimeFrame",
    "ProviderCost",
    "ReservationHandle",
    "ReservationSentinel",
    "SpendingLimit",
    "Supplier",
    "TokenUsage",
    "TransactionSource",
    "is_sentinel",
]
