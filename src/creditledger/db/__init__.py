"""Database access layer."""

from creditledger.db.engine import create_engine
from creditledger.db.records import (
    CreditReservation,
    LedgerAuditRecord,
    RecordKey,
    StoredRecord,
    WorkspaceBalance,
)
from creditledger.db.session import create_session_factory, db_session, run_in_tx
from creditledger.db.sql_store import SqlRecordStore
from creditledger.db.store import InMemoryRecordStore, RecordStore

__all__ = [
    "CreditReservation",
    "InMemoryRecordStore",
    "LedgerAuditRecord",
    "RecordKey",
    "RecordStore",
    "SqlRecordStore",
    "StoredRecord",
    "WorkspaceBalance",
    "create_engine",
    "create_session_factory",
    "db_session",
    "run_in_tx",
]
