"""Persisted record shapes and their storage keys.

Records are addressed by ``RecordKey(table, pk, sk)``. Balance and audit
records for one workspace share the partition key ``workspaces/{id}``.
"""

from datetime import datetime, timezone
from typing import Any, ClassVar, NamedTuple

from pydantic import BaseModel, Field

from creditledger.contracts.enums import Supplier, TransactionSource

WORKSPACES_TABLE = "workspaces"
TRANSACTIONS_TABLE = "workspace_credit_transactions"
RESERVATIONS_TABLE = "credit_reservations"

BALANCE_SK = "balance"
RESERVATION_SK = "reservation"


class RecordKey(NamedTuple):
    """Address of one record in the store."""

    table: str
    pk: str
    sk: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def workspace_pk(workspace_id: str) -> str:
    return f"workspaces/{workspace_id}"


def reservation_pk(reservation_id: str) -> str:
    return f"credit-reservations/{reservation_id}"


def id_from_pk(pk: str) -> str:
    """Strip the collection prefix from a partition key."""
    return pk.split("/", 1)[1]


def workspace_key(workspace_id: str) -> RecordKey:
    return RecordKey(WORKSPACES_TABLE, workspace_pk(workspace_id), BALANCE_SK)


def audit_key(workspace_id: str, sort_key: str) -> RecordKey:
    return RecordKey(TRANSACTIONS_TABLE, workspace_pk(workspace_id), sort_key)


def reservation_key(reservation_id: str) -> RecordKey:
    return RecordKey(RESERVATIONS_TABLE, reservation_pk(reservation_id), RESERVATION_SK)


class StoredRecord(BaseModel):
    """Base for records owned by a RecordStore."""

    table: ClassVar[str] = ""

    pk: str
    sk: str

    model_config = {"extra": "forbid"}

    def key(self) -> RecordKey:
        return RecordKey(self.table, self.pk, self.sk)


class WorkspaceBalance(StoredRecord):
    """Current balance of a workspace with its optimistic-concurrency version."""

    table: ClassVar[str] = WORKSPACES_TABLE

    sk: str = BALANCE_SK
    workspace_id: str
    balance: int
    version: int = 0
    updated_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def new(cls, workspace_id: str, balance: int = 0) -> "WorkspaceBalance":
        return cls(pk=workspace_pk(workspace_id), workspace_id=workspace_id, balance=balance)


class LedgerAuditRecord(StoredRecord):
    """Immutable record of one ledger entry as applied to a workspace."""

    table: ClassVar[str] = TRANSACTIONS_TABLE

    request_id: str
    workspace_id: str
    agent_id: str | None = None
    conversation_id: str | None = None
    source: TransactionSource
    supplier: Supplier
    model: str | None = None
    tool_call: str | None = None
    description: str
    amount: int
    balance_before: int
    balance_after: int
    created_at: datetime = Field(default_factory=_utcnow)


class CreditReservation(StoredRecord):
    """Provisional hold on workspace funds."""

    table: ClassVar[str] = RESERVATIONS_TABLE

    sk: str = RESERVATION_SK
    reservation_id: str
    workspace_id: str
    agent_id: str | None = None
    conversation_id: str | None = None
    source: TransactionSource
    supplier: Supplier
    model: str | None = None
    tool_call: str | None = None
    reserved_amount: int
    created_at: datetime = Field(default_factory=_utcnow)
    expires_at: datetime


RECORD_TYPES: dict[str, type[StoredRecord]] = {
    WORKSPACES_TABLE: WorkspaceBalance,
    TRANSACTIONS_TABLE: LedgerAuditRecord,
    RESERVATIONS_TABLE: CreditReservation,
}


def record_from_row(table: str, row: dict[str, Any]) -> StoredRecord:
    """Validate a raw row into the record type registered for table."""
    return RECORD_TYPES[table].model_validate(row)
