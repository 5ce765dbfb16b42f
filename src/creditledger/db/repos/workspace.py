"""Workspace balance repository."""

from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from creditledger.db.records import (
    WORKSPACES_TABLE,
    RecordKey,
    StoredRecord,
    WorkspaceBalance,
    id_from_pk,
    workspace_pk,
)
from creditledger.db.repos.base import BaseRepo
from creditledger.errors import StorageConflict


class WorkspaceRepo(BaseRepo):
    """Repository for workspaces table."""

    table = WORKSPACES_TABLE

    async def get_balance(self, workspace_id: str) -> WorkspaceBalance | None:
        """Get the balance row of a workspace."""
        result = await self.session.execute(
            text("""
                SELECT workspace_id, balance, version, updated_at
                FROM workspaces
                WHERE workspace_id = :workspace_id
            """),
            {"workspace_id": workspace_id},
        )
        row = result.mappings().fetchone()
        if row is None:
            return None
        return WorkspaceBalance(pk=workspace_pk(workspace_id), **dict(row))

    async def create_workspace(self, workspace_id: str, balance: int = 0) -> WorkspaceBalance:
        """Insert a new workspace with an opening balance."""
        record = WorkspaceBalance(
            pk=workspace_pk(workspace_id),
            workspace_id=workspace_id,
            balance=balance,
            updated_at=self.now(),
        )
        await self._insert(record)
        return record

    async def get(self, key: RecordKey) -> WorkspaceBalance | None:
        return await self.get_balance(id_from_pk(key.pk))

    async def put(self, record: StoredRecord, previous: StoredRecord | None) -> None:
        if not isinstance(record, WorkspaceBalance):
            raise TypeError(f"WorkspaceRepo cannot store {type(record).__name__}")
        if previous is None:
            await self._insert(record)
            return
        if not isinstance(previous, WorkspaceBalance):
            raise TypeError(f"WorkspaceRepo cannot compare {type(previous).__name__}")

        result = await self.session.execute(
            text("""
                UPDATE workspaces
                SET balance = :balance,
                    version = :version,
                    updated_at = :updated_at
                WHERE workspace_id = :workspace_id AND version = :expected_version
            """),
            {
                "workspace_id": record.workspace_id,
                "balance": record.balance,
                "version": record.version,
                "updated_at": record.updated_at,
                "expected_version": previous.version,
            },
        )
        if result.rowcount == 0:
            raise StorageConflict(
                f"Workspace {record.workspace_id} changed since version {previous.version}"
            )

    async def _insert(self, record: WorkspaceBalance) -> None:
        params: dict[str, Any] = {
            "workspace_id": record.workspace_id,
            "balance": record.balance,
            "version": record.version,
            "updated_at": record.updated_at,
        }
        try:
            await self.session.execute(
                text("""
                    INSERT INTO workspaces (workspace_id, balance, version, updated_at)
                    VALUES (:workspace_id, :balance, :version, :updated_at)
                """),
                params,
            )
        except IntegrityError as exc:
            raise StorageConflict(f"Workspace {record.workspace_id} already exists") from exc
