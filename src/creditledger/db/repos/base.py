"""Base repository with record-key addressing invariants."""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import ClassVar

from sqlalchemy.ext.asyncio import AsyncSession

from creditledger.db.records import RecordKey, StoredRecord


class BaseRepo(ABC):
    """Base repository class for ledger tables.

    Invariants:
    - Every query addresses rows by the partition of a RecordKey (workspace id
      or reservation id); no unscoped reads or writes
    - Repositories never commit; the caller owns the transaction so that all
      writes of one atomic update land together
    - Balance rows are updated only with a version predicate; audit rows and
      reservations are insert-only

    Design decisions:
    - Raw SQL via sqlalchemy ``text()`` keeps the statements explicit
    - A conflicting concurrent write surfaces as StorageConflict so the store
      can retry the whole fetch-compute-write cycle
    """

    table: ClassVar[str] = ""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @staticmethod
    def now() -> datetime:
        """Get current UTC timestamp."""
        return datetime.now(timezone.utc)

    @abstractmethod
    async def get(self, key: RecordKey) -> StoredRecord | None:
        """Fetch the record at key.

        Args:
            key: Record key; its table must match the repository

        Returns:
            Record instance or None if absent
        """
        raise NotImplementedError

    @abstractmethod
    async def put(self, record: StoredRecord, previous: StoredRecord | None) -> None:
        """Write record, given the version fetched earlier in the same update.

        Args:
            record: Record to write
            previous: Record as fetched before the callback ran, or None if it
                was absent

        Raises:
            StorageConflict: If the row changed since it was fetched
        """
        raise NotImplementedError
