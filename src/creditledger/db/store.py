"""Record store contract consumed by the ledger, plus an in-memory store."""

import asyncio
import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Protocol

from creditledger.db.records import (
    RESERVATIONS_TABLE,
    TRANSACTIONS_TABLE,
    CreditReservation,
    LedgerAuditRecord,
    RecordKey,
    StoredRecord,
    WorkspaceBalance,
    workspace_pk,
)
from creditledger.errors import StorageConflict
from creditledger.settings import Settings, get_settings

logger = logging.getLogger(__name__)

FetchedRecords = Mapping[str, StoredRecord | None]
AtomicUpdateCallback = Callable[[FetchedRecords], list[StoredRecord]]


class RecordStore(Protocol):
    """Storage primitive the ledger requires.

    ``atomic_update`` fetches every key, calls ``callback`` with the fetched
    values (``None`` for absent records) and writes back all returned records
    as one unit, or nothing if the callback raises. The callback may be
    called again when the store retries after a conflicting write.
    """

    async def atomic_update(
        self,
        keys: Mapping[str, RecordKey],
        callback: AtomicUpdateCallback,
    ) -> list[StoredRecord]:
        ...

    async def get(self, key: RecordKey) -> StoredRecord | None:
        ...

    async def delete(self, key: RecordKey) -> bool:
        """Delete a record; returns False if it was already absent."""
        ...

    async def expired_reservations(self, now: datetime, limit: int = 100) -> list[CreditReservation]:
        ...

    async def spending_in_window(
        self,
        workspace_id: str,
        agent_id: str | None,
        since: datetime,
    ) -> int:
        """Net debits recorded since the given time, never negative."""
        ...


class InMemoryRecordStore:
    """Process-local RecordStore with version-checked writes."""

    def __init__(self, max_retries: int | None = None, settings: Settings | None = None) -> None:
        self._records: dict[RecordKey, StoredRecord] = {}
        self._lock = asyncio.Lock()
        if max_retries is None:
            max_retries = (settings or get_settings()).store_max_retries
        self._max_retries = max_retries
        self.atomic_update_calls = 0
        self.records_written = 0

    def put(self, record: StoredRecord) -> None:
        """Write a record directly, outside any atomic update."""
        self._records[record.key()] = record.model_copy(deep=True)

    def add_workspace(self, workspace_id: str, balance: int = 0) -> WorkspaceBalance:
        record = WorkspaceBalance.new(workspace_id, balance)
        self.put(record)
        return record

    def records(self, table: str | None = None) -> list[StoredRecord]:
        return [
            r.model_copy(deep=True)
            for k, r in self._records.items()
            if table is None or k.table == table
        ]

    def audit_records(self, workspace_id: str) -> list[LedgerAuditRecord]:
        """Audit trail of a workspace in sort-key order."""
        pk = workspace_pk(workspace_id)
        found = [
            r
            for k, r in self._records.items()
            if k.table == TRANSACTIONS_TABLE and k.pk == pk
        ]
        found.sort(key=lambda r: r.sk)
        return [r.model_copy(deep=True) for r in found if isinstance(r, LedgerAuditRecord)]

    def _snapshot(self, key: RecordKey) -> StoredRecord | None:
        record = self._records.get(key)
        return record.model_copy(deep=True) if record is not None else None

    async def get(self, key: RecordKey) -> StoredRecord | None:
        return self._snapshot(key)

    async def delete(self, key: RecordKey) -> bool:
        async with self._lock:
            return self._records.pop(key, None) is not None

    async def atomic_update(
        self,
        keys: Mapping[str, RecordKey],
        callback: AtomicUpdateCallback,
    ) -> list[StoredRecord]:
        self.atomic_update_calls += 1
        attempt = 0
        while True:
            attempt += 1
            fetched = {handle: self._snapshot(key) for handle, key in keys.items()}
            fetched_by_key = {keys[h]: rec for h, rec in fetched.items()}
            records = callback(fetched)
            async with self._lock:
                try:
                    self._check_unchanged(fetched_by_key, records)
                except StorageConflict:
                    if attempt >= self._max_retries:
                        raise
                    logger.info("Atomic update conflict, retrying (attempt %d)", attempt)
                    continue
                for record in records:
                    self._records[record.key()] = record.model_copy(deep=True)
                self.records_written += len(records)
            return records

    def _check_unchanged(
        self,
        fetched_by_key: Mapping[RecordKey, StoredRecord | None],
        records: list[StoredRecord],
    ) -> None:
        for record in records:
            key = record.key()
            current = self._records.get(key)
            previous = fetched_by_key.get(key)
            if previous is None:
                if current is not None:
                    raise StorageConflict(f"Record {key.pk}/{key.sk} was created concurrently")
                continue
            if current is None:
                raise StorageConflict(f"Record {key.pk}/{key.sk} was deleted concurrently")
            if isinstance(previous, WorkspaceBalance) and isinstance(current, WorkspaceBalance):
                if previous.version != current.version:
                    raise StorageConflict(
                        f"Record {key.pk}/{key.sk} version {current.version} != {previous.version}"
                    )

    async def expired_reservations(self, now: datetime, limit: int = 100) -> list[CreditReservation]:
        expired = [
            r
            for k, r in self._records.items()
            if k.table == RESERVATIONS_TABLE
            and isinstance(r, CreditReservation)
            and r.expires_at < now
        ]
        expired.sort(key=lambda r: r.expires_at)
        return [r.model_copy(deep=True) for r in expired[:limit]]

    async def spending_in_window(
        self,
        workspace_id: str,
        agent_id: str | None,
        since: datetime,
    ) -> int:
        total = 0
        for record in self.audit_records(workspace_id):
            if record.created_at < since:
                continue
            if agent_id is not None and record.agent_id != agent_id:
                continue
            total += record.amount
        return max(0, -total)
