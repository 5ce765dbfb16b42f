"""Postgres-backed RecordStore."""

import logging
from collections.abc import Mapping
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from creditledger.db.records import (
    RESERVATIONS_TABLE,
    CreditReservation,
    RecordKey,
    StoredRecord,
    id_from_pk,
)
from creditledger.db.repos import BaseRepo, ReservationRepo, TransactionRepo, WorkspaceRepo
from creditledger.db.session import SessionFactory, db_session, run_in_tx
from creditledger.db.store import AtomicUpdateCallback
from creditledger.errors import StorageConflict
from creditledger.settings import Settings, get_settings

logger = logging.getLogger(__name__)

_REPO_TYPES: tuple[type[BaseRepo], ...] = (WorkspaceRepo, TransactionRepo, ReservationRepo)


class SqlRecordStore:
    """RecordStore over the ledger tables.

    Each atomic update runs in one database transaction: rows are read, the
    callback computes the writes, and every write is applied with a
    version or existence predicate. A predicate miss rolls the transaction
    back and the whole cycle is retried.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        max_retries: int | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        if max_retries is None:
            max_retries = (settings or get_settings()).store_max_retries
        self._max_retries = max_retries

    @staticmethod
    def _repos(session: AsyncSession) -> dict[str, BaseRepo]:
        return {repo.table: repo(session) for repo in _REPO_TYPES}

    async def atomic_update(
        self,
        keys: Mapping[str, RecordKey],
        callback: AtomicUpdateCallback,
    ) -> list[StoredRecord]:
        attempt = 0
        while True:
            attempt += 1
            try:
                async with db_session(self._session_factory) as session:
                    return await run_in_tx(
                        session, lambda s: self._apply(s, keys, callback)
                    )
            except StorageConflict:
                if attempt >= self._max_retries:
                    raise
                logger.info("Atomic update conflict, retrying (attempt %d)", attempt)

    async def _apply(
        self,
        session: AsyncSession,
        keys: Mapping[str, RecordKey],
        callback: AtomicUpdateCallback,
    ) -> list[StoredRecord]:
        repos = self._repos(session)
        fetched: dict[str, StoredRecord | None] = {}
        for handle, key in keys.items():
            fetched[handle] = await repos[key.table].get(key)
        fetched_by_key = {keys[h]: rec for h, rec in fetched.items()}

        records = callback(fetched)
        for record in records:
            await repos[record.table].put(record, fetched_by_key.get(record.key()))
        return records

    async def get(self, key: RecordKey) -> StoredRecord | None:
        async with db_session(self._session_factory) as session:
            return await self._repos(session)[key.table].get(key)

    async def delete(self, key: RecordKey) -> bool:
        if key.table != RESERVATIONS_TABLE:
            raise ValueError(f"Records in {key.table} cannot be deleted")
        async with db_session(self._session_factory) as session:
            return await run_in_tx(
                session, lambda s: ReservationRepo(s).delete(id_from_pk(key.pk))
            )

    async def expired_reservations(self, now: datetime, limit: int = 100) -> list[CreditReservation]:
        async with db_session(self._session_factory) as session:
            return await ReservationRepo(session).list_expired(now, limit)

    async def spending_in_window(
        self,
        workspace_id: str,
        agent_id: str | None,
        since: datetime,
    ) -> int:
        async with db_session(self._session_factory) as session:
            return await TransactionRepo(session).spending_in_window(workspace_id, agent_id, since)
