"""Request-scoped buffer of pending ledger entries."""

import logging
from collections.abc import Iterator

from creditledger.contracts.enums import TransactionSource
from creditledger.contracts.models import LedgerEntry

logger = logging.getLogger(__name__)


class TransactionBuffer:
    """Pending ledger entries grouped by workspace, in insertion order.

    Insertion order within a workspace is the order in which balance changes
    are considered to have happened.
    """

    def __init__(self) -> None:
        self._entries: dict[str, list[LedgerEntry]] = {}

    def add(self, entry: LedgerEntry) -> bool:
        """Append entry; returns False if it was discarded.

        Zero-amount entries are dropped unless they record tool execution,
        which is kept for usage tracking even when free.
        """
        if entry.amount == 0 and entry.source != TransactionSource.TOOL_EXECUTION:
            return False
        self._entries.setdefault(entry.workspace_id, []).append(entry)
        logger.debug(
            "Buffered ledger entry: workspace=%s amount=%d workspaces=%d entries_for_workspace=%d",
            entry.workspace_id,
            entry.amount,
            len(self._entries),
            len(self._entries[entry.workspace_id]),
        )
        return True

    def workspaces(self) -> list[str]:
        return list(self._entries)

    def entries_for(self, workspace_id: str) -> list[LedgerEntry]:
        return list(self._entries.get(workspace_id, []))

    def items(self) -> Iterator[tuple[str, list[LedgerEntry]]]:
        for workspace_id, entries in self._entries.items():
            yield workspace_id, list(entries)

    def total_entries(self) -> int:
        return sum(len(entries) for entries in self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)


def create_transaction_buffer() -> TransactionBuffer:
    """Create an empty transaction buffer."""
    return TransactionBuffer()


def add_transaction(buffer: TransactionBuffer, entry: LedgerEntry) -> bool:
    """Add entry to buffer, discarding non-tool zero amounts."""
    return buffer.add(entry)
