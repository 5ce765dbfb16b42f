"""Core ledger: buffer, committer, reservations, limits, pricing."""

from creditledger.core.buffer import TransactionBuffer, add_transaction, create_transaction_buffer
from creditledger.core.cleanup import cleanup_expired_reservations
from creditledger.core.committer import LEDGER_LOGGER_NAME, LedgerCommitter
from creditledger.core.context import CreditTransactionContext, credit_transactions
from creditledger.core.money import (
    NANO_PER_MILLIONTH,
    NANO_PER_UNIT,
    format_amount,
    from_millionths,
    nano_to_units,
    to_millionths,
    units_to_nano,
)
from creditledger.core.pricing import ModelPricing, PriceTableOracle, PricingOracle
from creditledger.core.reservations import ReservationManager
from creditledger.core.sort_keys import SortKeyGenerator
from creditledger.core.spending_limits import (
    RollingWindowLimitGate,
    SpendingLimitGate,
    rolling_window_start,
)

__all__ = [
    "LEDGER_LOGGER_NAME",
    "NANO_PER_MILLIONTH",
    "NANO_PER_UNIT",
    "CreditTransactionContext",
    "LedgerCommitter",
    "ModelPricing",
    "PriceTableOracle",
    "PricingOracle",
    "ReservationManager",
    "RollingWindowLimitGate",
    "SortKeyGenerator",
    "SpendingLimitGate",
    "TransactionBuffer",
    "add_transaction",
    "cleanup_expired_reservations",
    "create_transaction_buffer",
    "credit_transactions",
    "format_amount",
    "from_millionths",
    "nano_to_units",
    "rolling_window_start",
    "to_millionths",
    "units_to_nano",
]
