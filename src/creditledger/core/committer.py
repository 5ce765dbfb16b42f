"""Atomic application of buffered ledger entries to workspace balances."""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from creditledger.contracts.models import LedgerEntry
from creditledger.core.buffer import TransactionBuffer
from creditledger.core.sort_keys import SortKeyGenerator
from creditledger.db.records import (
    LedgerAuditRecord,
    RecordKey,
    StoredRecord,
    WorkspaceBalance,
    audit_key,
    workspace_key,
    workspace_pk,
)
from creditledger.db.store import FetchedRecords, RecordStore
from creditledger.errors import LedgerError, WorkspaceNotFound

LEDGER_LOGGER_NAME = "creditledger.ledger"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class _WorkspacePlan:
    """Entries of one workspace with their precomputed audit sort keys."""

    workspace_id: str
    handle: str
    total: int
    entries: tuple[LedgerEntry, ...]
    sort_keys: tuple[str, ...]


class LedgerCommitter:
    """Commits a TransactionBuffer with one atomic multi-record write.

    Every workspace in the buffer gets its balance updated by the signed sum
    of its entries, and every entry gets its own audit record whose
    before/after balances come from replaying the entries in insertion order.
    """

    def __init__(
        self,
        sort_keys: SortKeyGenerator | None = None,
        clock: Callable[[], datetime] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._sort_keys = sort_keys or SortKeyGenerator()
        self._clock = clock or _utcnow
        self._logger = logger or logging.getLogger(LEDGER_LOGGER_NAME)

    async def commit(
        self,
        store: RecordStore,
        buffer: TransactionBuffer,
        request_id: str,
    ) -> list[StoredRecord]:
        """Apply all buffered entries atomically.

        Args:
            store: Record store providing the atomic update primitive
            buffer: Entries accumulated during the request
            request_id: Invocation id stamped on every audit record

        Returns:
            The written balance and audit records (empty for an empty buffer)

        Raises:
            WorkspaceNotFound: If any referenced workspace is absent; nothing
                is written for any workspace.
        """
        if not buffer:
            return []

        now = self._clock()
        plans = self._plan(buffer, now)

        keys: dict[str, RecordKey] = {}
        for plan in plans:
            keys[plan.handle] = workspace_key(plan.workspace_id)
        index = 0
        for plan in plans:
            for sort_key in plan.sort_keys:
                keys[f"transaction-{index}"] = audit_key(plan.workspace_id, sort_key)
                index += 1

        def build(fetched: FetchedRecords) -> list[StoredRecord]:
            return _build_records(plans, fetched, request_id, now)

        written = await store.atomic_update(keys, build)
        self._log_commit(plans, written, request_id)
        return written

    def _plan(self, buffer: TransactionBuffer, now: datetime) -> list[_WorkspacePlan]:
        plans = []
        for workspace_id, entries in buffer.items():
            plans.append(
                _WorkspacePlan(
                    workspace_id=workspace_id,
                    handle=f"workspace-{workspace_id}",
                    total=sum(e.amount for e in entries),
                    entries=tuple(entries),
                    sort_keys=tuple(self._sort_keys.next_key(now) for _ in entries),
                )
            )
        return plans

    def _log_commit(
        self,
        plans: list[_WorkspacePlan],
        written: list[StoredRecord],
        request_id: str,
    ) -> None:
        balances = {
            r.workspace_id: r for r in written if isinstance(r, WorkspaceBalance)
        }
        for plan in plans:
            balance = balances.get(plan.workspace_id)
            payload = {
                "request_id": request_id,
                "workspace_id": plan.workspace_id,
                "entries": len(plan.entries),
                "amount": plan.total,
                "balance_after": balance.balance if balance else None,
                "version": balance.version if balance else None,
            }
            self._logger.info(json.dumps(payload))


def _build_records(
    plans: list[_WorkspacePlan],
    fetched: FetchedRecords,
    request_id: str,
    now: datetime,
) -> list[StoredRecord]:
    """Compute the record set to write from freshly fetched balances.

    Pure function of its inputs; stores may call it more than once.
    """
    current: dict[str, WorkspaceBalance] = {}
    for plan in plans:
        record = fetched.get(plan.handle)
        if not isinstance(record, WorkspaceBalance):
            raise WorkspaceNotFound(plan.workspace_id, request_id)
        current[plan.workspace_id] = record

    balances: list[StoredRecord] = []
    audits: list[StoredRecord] = []
    for plan in plans:
        workspace = current[plan.workspace_id]
        new_balance = workspace.balance + plan.total
        balances.append(
            workspace.model_copy(
                update={
                    "balance": new_balance,
                    "version": workspace.version + 1,
                    "updated_at": now,
                }
            )
        )

        running = workspace.balance
        for entry, sort_key in zip(plan.entries, plan.sort_keys):
            before = running
            running += entry.amount
            audits.append(
                LedgerAuditRecord(
                    pk=workspace_pk(plan.workspace_id),
                    sk=sort_key,
                    request_id=request_id,
                    balance_before=before,
                    balance_after=running,
                    created_at=now,
                    **entry.model_dump(),
                )
            )
        if running != new_balance:
            raise LedgerError(
                f"Replayed balance {running} != aggregate balance {new_balance} "
                f"for workspace {plan.workspace_id}"
            )

    return balances + audits
