#!/usr/bin/env python3
"""Demo runner for one metered request against an in-memory ledger.

Usage:
    python scripts/demo_run.py

Walks through reserve, settle, refund and the end-of-request commit, then
prints the workspace audit trail.
"""

import asyncio
import logging
import sys
from decimal import Decimal
from uuid import uuid4

from creditledger.contracts import (
    CostContext,
    LedgerEntry,
    SpendingLimit,
    Supplier,
    TokenUsage,
    TransactionSource,
)
from creditledger.contracts.enums import LimitTimeFrame
from creditledger.core import (
    LEDGER_LOGGER_NAME,
    LedgerCommitter,
    ModelPricing,
    PriceTableOracle,
    ReservationManager,
    RollingWindowLimitGate,
    SortKeyGenerator,
    credit_transactions,
)
from creditledger.core.money import format_amount, units_to_nano
from creditledger.db import InMemoryRecordStore
from creditledger.settings import get_settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

ledger_logger = logging.getLogger(LEDGER_LOGGER_NAME)
ledger_logger.setLevel(logging.INFO)

logger = logging.getLogger(__name__)

DEMO_MODEL = "demo/chat-small"


async def main() -> int:
    workspace_id = f"demo-{uuid4().hex[:8]}"
    request_id = str(uuid4())

    store = InMemoryRecordStore()
    store.add_workspace(workspace_id, balance=units_to_nano(5))

    pricing = PriceTableOracle(
        {DEMO_MODEL: ModelPricing(input=Decimal("3"), output=Decimal("15"))}
    )
    gate = RollingWindowLimitGate(
        store,
        default_limits=[SpendingLimit(time_frame=LimitTimeFrame.DAILY, amount=units_to_nano(2))],
    )
    sort_keys = SortKeyGenerator()
    manager = ReservationManager(
        store, pricing, gate=gate, settings=get_settings(), sort_keys=sort_keys
    )
    context = CostContext(agent_id="agent-demo", conversation_id="conv-demo", model=DEMO_MODEL)

    logger.info("Workspace %s opened with 5 units", workspace_id)

    async with credit_transactions(
        store, request_id, committer=LedgerCommitter(sort_keys=sort_keys)
    ) as tx:
        completion = await manager.reserve(workspace_id, units_to_nano("0.05"), context, request_id)
        await manager.settle(
            tx.buffer,
            completion,
            TokenUsage(model=DEMO_MODEL, prompt_tokens=1200, completion_tokens=800),
        )

        abandoned = await manager.reserve(workspace_id, units_to_nano("0.02"), context, request_id)
        await manager.refund(tx.buffer, abandoned)

        tx.add_transaction(
            LedgerEntry(
                workspace_id=workspace_id,
                agent_id="agent-demo",
                source=TransactionSource.TOOL_EXECUTION,
                supplier=Supplier.TAVILY,
                tool_call="web-search",
                description="Tool call web-search",
                amount=-units_to_nano("0.008"),
            )
        )

    print("\n=== Audit trail ===")
    for record in store.audit_records(workspace_id):
        print(
            f"{record.sk}  {format_amount(record.amount):>14}  "
            f"{format_amount(record.balance_before):>12} -> {format_amount(record.balance_after):<12}"
            f"  {record.description}"
        )

    balance = store.records("workspaces")[0]
    print(f"\nFinal balance: {format_amount(balance.balance)} (version {balance.version})")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
