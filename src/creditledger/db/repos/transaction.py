"""Ledger audit trail repository."""

from datetime import datetime

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from creditledger.db.records import (
    TRANSACTIONS_TABLE,
    LedgerAuditRecord,
    RecordKey,
    StoredRecord,
    id_from_pk,
    workspace_pk,
)
from creditledger.db.repos.base import BaseRepo
from creditledger.errors import StorageConflict

_COLUMNS = """
    workspace_id, sort_key AS sk, request_id, agent_id, conversation_id, source,
    supplier, model, tool_call, description, amount, balance_before,
    balance_after, created_at
"""


class TransactionRepo(BaseRepo):
    """Repository for workspace_credit_transactions table (insert-only)."""

    table = TRANSACTIONS_TABLE

    async def get(self, key: RecordKey) -> LedgerAuditRecord | None:
        result = await self.session.execute(
            text(f"""
                SELECT {_COLUMNS}
                FROM workspace_credit_transactions
                WHERE workspace_id = :workspace_id AND sort_key = :sort_key
            """),
            {"workspace_id": id_from_pk(key.pk), "sort_key": key.sk},
        )
        row = result.mappings().fetchone()
        return self._to_record(row) if row else None

    async def put(self, record: StoredRecord, previous: StoredRecord | None) -> None:
        if not isinstance(record, LedgerAuditRecord):
            raise TypeError(f"TransactionRepo cannot store {type(record).__name__}")
        if previous is not None:
            raise StorageConflict(f"Audit record {record.pk}/{record.sk} already exists")

        try:
            await self.session.execute(
                text("""
                    INSERT INTO workspace_credit_transactions (
                        workspace_id, sort_key, request_id, agent_id, conversation_id,
                        source, supplier, model, tool_call, description, amount,
                        balance_before, balance_after, created_at
                    )
                    VALUES (
                        :workspace_id, :sort_key, :request_id, :agent_id, :conversation_id,
                        :source, :supplier, :model, :tool_call, :description, :amount,
                        :balance_before, :balance_after, :created_at
                    )
                """),
                {
                    "workspace_id": record.workspace_id,
                    "sort_key": record.sk,
                    "request_id": record.request_id,
                    "agent_id": record.agent_id,
                    "conversation_id": record.conversation_id,
                    "source": record.source.value,
                    "supplier": record.supplier.value,
                    "model": record.model,
                    "tool_call": record.tool_call,
                    "description": record.description,
                    "amount": record.amount,
                    "balance_before": record.balance_before,
                    "balance_after": record.balance_after,
                    "created_at": record.created_at,
                },
            )
        except IntegrityError as exc:
            raise StorageConflict(f"Audit record {record.pk}/{record.sk} already exists") from exc

    async def list_for_workspace(
        self,
        workspace_id: str,
        limit: int = 50,
        before: str | None = None,
    ) -> list[LedgerAuditRecord]:
        """List audit records of a workspace, newest first.

        Args:
            workspace_id: Workspace identifier (required for isolation)
            limit: Maximum number of records
            before: Only records with a sort key below this cursor

        Returns:
            Audit records in descending sort-key order
        """
        query = f"""
            SELECT {_COLUMNS}
            FROM workspace_credit_transactions
            WHERE workspace_id = :workspace_id
        """
        params: dict[str, object] = {"workspace_id": workspace_id, "limit": limit}
        if before is not None:
            query += " AND sort_key < :before"
            params["before"] = before
        query += " ORDER BY sort_key DESC LIMIT :limit"

        result = await self.session.execute(text(query), params)
        return [self._to_record(row) for row in result.mappings().fetchall()]

    async def spending_in_window(
        self,
        workspace_id: str,
        agent_id: str | None,
        since: datetime,
    ) -> int:
        """Net debits of a workspace (or one of its agents) since a point in time."""
        query = """
            SELECT COALESCE(SUM(amount), 0)
            FROM workspace_credit_transactions
            WHERE workspace_id = :workspace_id AND created_at >= :since
        """
        params: dict[str, object] = {"workspace_id": workspace_id, "since": since}
        if agent_id is not None:
            query += " AND agent_id = :agent_id"
            params["agent_id"] = agent_id

        result = await self.session.execute(text(query), params)
        total = int(result.scalar() or 0)
        return max(0, -total)

    @staticmethod
    def _to_record(row) -> LedgerAuditRecord:
        data = dict(row)
        return LedgerAuditRecord(pk=workspace_pk(data["workspace_id"]), **data)
