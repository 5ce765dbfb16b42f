"""Tests for the Postgres RecordStore against a fake SQLAlchemy session."""

from datetime import timedelta
from typing import Any

import pytest
from sqlalchemy.exc import IntegrityError

from creditledger.contracts import LedgerEntry, Supplier, TokenUsage, TransactionSource
from creditledger.core import LedgerCommitter, ReservationManager, SortKeyGenerator, create_transaction_buffer
from creditledger.db import SqlRecordStore, db_session
from creditledger.db.records import (
    CreditReservation,
    WorkspaceBalance,
    audit_key,
    reservation_key,
    workspace_key,
)
from creditledger.db.repos import TransactionRepo, WorkspaceRepo
from creditledger.errors import StorageConflict, WorkspaceNotFound
from creditledger.settings import Settings


class FakeResult:
    """Subset of the SQLAlchemy Result API used by the repositories."""

    def __init__(self, rows: list[dict[str, Any]] | None = None, rowcount: int = 0, scalar: Any = None) -> None:
        self._rows = rows or []
        self.rowcount = rowcount
        self._scalar = scalar

    def mappings(self) -> "FakeResult":
        return self

    def fetchone(self) -> dict[str, Any] | None:
        return self._rows[0] if self._rows else None

    def fetchall(self) -> list[dict[str, Any]]:
        return list(self._rows)

    def scalar(self) -> Any:
        return self._scalar


class FakeDatabase:
    """In-memory tables interpreting the statements issued by the repositories."""

    def __init__(self) -> None:
        self.workspaces: dict[str, dict[str, Any]] = {}
        self.transactions: dict[tuple[str, str], dict[str, Any]] = {}
        self.reservations: dict[str, dict[str, Any]] = {}
        self.update_attempts = 0
        self.interfere_updates = 0
        self.commits = 0
        self.rollbacks = 0

    def factory(self) -> "FakeSession":
        return FakeSession(self)

    def interfere(self, workspace_id: str) -> None:
        row = self.workspaces[workspace_id]
        row["balance"] += 500
        row["version"] += 1


class _Transaction:
    def __init__(self, session: "FakeSession") -> None:
        self.session = session

    async def __aenter__(self) -> "_Transaction":
        self.session.undo = []
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.session.db.commits += 1
        else:
            self.session.undo_all()
        self.session.undo = []


class FakeSession:
    def __init__(self, db: FakeDatabase) -> None:
        self.db = db
        self.undo: list[tuple[dict, Any, Any]] = []

    async def __aenter__(self) -> "FakeSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    def begin(self) -> _Transaction:
        return _Transaction(self)

    async def rollback(self) -> None:
        self.db.rollbacks += 1
        self.undo_all()

    async def close(self) -> None:
        return None

    def undo_all(self) -> None:
        for table, key, previous in reversed(self.undo):
            if previous is None:
                table.pop(key, None)
            else:
                table[key] = previous
        self.undo = []

    def _write(self, table: dict, key: Any, value: dict[str, Any] | None) -> None:
        previous = table.get(key)
        self.undo.append((table, key, dict(previous) if previous is not None else None))
        if value is None:
            table.pop(key, None)
        else:
            table[key] = value

    async def execute(self, statement: Any, params: dict[str, Any] | None = None) -> FakeResult:
        sql = " ".join(str(statement).split())
        p = dict(params or {})
        db = self.db

        if sql.startswith("SELECT workspace_id, balance, version, updated_at FROM workspaces"):
            row = db.workspaces.get(p["workspace_id"])
            return FakeResult([dict(row)] if row else [])
        if sql.startswith("INSERT INTO workspaces"):
            if p["workspace_id"] in db.workspaces:
                raise IntegrityError(sql, p, Exception("duplicate key"))
            self._write(db.workspaces, p["workspace_id"], p)
            return FakeResult(rowcount=1)
        if sql.startswith("UPDATE workspaces"):
            db.update_attempts += 1
            if db.update_attempts <= db.interfere_updates:
                db.interfere(p["workspace_id"])
            row = db.workspaces.get(p["workspace_id"])
            if row is None or row["version"] != p["expected_version"]:
                return FakeResult(rowcount=0)
            updated = dict(row, balance=p["balance"], version=p["version"], updated_at=p["updated_at"])
            self._write(db.workspaces, p["workspace_id"], updated)
            return FakeResult(rowcount=1)

        if sql.startswith("INSERT INTO workspace_credit_transactions"):
            key = (p["workspace_id"], p["sort_key"])
            if key in db.transactions:
                raise IntegrityError(sql, p, Exception("duplicate key"))
            self._write(db.transactions, key, p)
            return FakeResult(rowcount=1)
        if sql.startswith("SELECT COALESCE(SUM(amount), 0)"):
            total = sum(
                row["amount"]
                for row in db.transactions.values()
                if row["workspace_id"] == p["workspace_id"]
                and row["created_at"] >= p["since"]
                and ("agent_id" not in p or row["agent_id"] == p["agent_id"])
            )
            return FakeResult(scalar=total)
        if "FROM workspace_credit_transactions" in sql:
            rows = [
                row
                for (ws, sk), row in db.transactions.items()
                if ws == p["workspace_id"]
                and ("sort_key" not in p or sk == p["sort_key"])
                and ("before" not in p or sk < p["before"])
            ]
            rows.sort(key=lambda row: row["sort_key"], reverse="DESC" in sql)
            if "limit" in p:
                rows = rows[: p["limit"]]
            return FakeResult([self._audit_row(row) for row in rows])

        if sql.startswith("INSERT INTO credit_reservations"):
            if p["reservation_id"] in db.reservations:
                raise IntegrityError(sql, p, Exception("duplicate key"))
            self._write(db.reservations, p["reservation_id"], p)
            return FakeResult(rowcount=1)
        if sql.startswith("DELETE FROM credit_reservations"):
            if p["reservation_id"] not in db.reservations:
                return FakeResult(rowcount=0)
            self._write(db.reservations, p["reservation_id"], None)
            return FakeResult(rowcount=1)
        if "FROM credit_reservations WHERE reservation_id" in sql:
            row = db.reservations.get(p["reservation_id"])
            return FakeResult([dict(row)] if row else [])
        if "FROM credit_reservations WHERE expires_at" in sql:
            rows = sorted(
                (r for r in db.reservations.values() if r["expires_at"] < p["now"]),
                key=lambda r: r["expires_at"],
            )
            return FakeResult([dict(r) for r in rows[: p["limit"]]])

        raise AssertionError(f"unexpected statement: {sql}")

    @staticmethod
    def _audit_row(row: dict[str, Any]) -> dict[str, Any]:
        data = dict(row)
        data["sk"] = data.pop("sort_key")
        return data


def make_entry(workspace_id: str, amount: int, agent_id: str = "agent-1") -> LedgerEntry:
    return LedgerEntry(
        workspace_id=workspace_id,
        agent_id=agent_id,
        source=TransactionSource.TEXT_GENERATION,
        supplier=Supplier.OPENROUTER,
        model="test/chat-model",
        description="usage",
        amount=amount,
    )


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def sql_store(fake_db) -> SqlRecordStore:
    return SqlRecordStore(fake_db.factory, max_retries=3)


async def create_workspace(fake_db: FakeDatabase, workspace_id: str, balance: int) -> None:
    async with db_session(fake_db.factory) as session:
        async with session.begin():
            await WorkspaceRepo(session).create_workspace(workspace_id, balance)


class TestSqlRecordStoreCommit:
    """Test ledger commits through the SQL store."""

    @pytest.mark.asyncio
    async def test_commit_updates_balance_and_inserts_chain(
        self, fake_db, sql_store, workspace_id, now
    ) -> None:
        """Test the committed rows carry the sequential balance chain."""
        await create_workspace(fake_db, workspace_id, 10_000_000)
        buffer = create_transaction_buffer()
        for amount in (-1_000_000, -2_000_000, -500_000):
            buffer.add(make_entry(workspace_id, amount))

        await LedgerCommitter(clock=lambda: now).commit(sql_store, buffer, "req-1")

        row = fake_db.workspaces[workspace_id]
        assert row["balance"] == 6_500_000
        assert row["version"] == 1
        chain = [
            (r["balance_before"], r["balance_after"])
            for _, r in sorted(fake_db.transactions.items())
        ]
        assert chain == [
            (10_000_000, 9_000_000),
            (9_000_000, 7_000_000),
            (7_000_000, 6_500_000),
        ]
        assert all(r["source"] == "text-generation" for r in fake_db.transactions.values())

    @pytest.mark.asyncio
    async def test_missing_workspace_rolls_back(self, fake_db, sql_store, workspace_id, now) -> None:
        """Test a missing workspace aborts the commit with no rows written."""
        await create_workspace(fake_db, workspace_id, 1_000)
        buffer = create_transaction_buffer()
        buffer.add(make_entry(workspace_id, -100))
        buffer.add(make_entry("ws-missing", -100))

        with pytest.raises(WorkspaceNotFound):
            await LedgerCommitter(clock=lambda: now).commit(sql_store, buffer, "req-1")

        assert fake_db.workspaces[workspace_id]["balance"] == 1_000
        assert fake_db.transactions == {}

    @pytest.mark.asyncio
    async def test_version_conflict_retried(self, fake_db, sql_store, workspace_id, now) -> None:
        """Test a concurrent balance change is detected and the update recomputed."""
        await create_workspace(fake_db, workspace_id, 1_000)
        fake_db.interfere_updates = 1
        buffer = create_transaction_buffer()
        buffer.add(make_entry(workspace_id, -100))

        await LedgerCommitter(clock=lambda: now).commit(sql_store, buffer, "req-1")

        assert fake_db.update_attempts == 2
        assert fake_db.workspaces[workspace_id]["balance"] == 1_400
        assert fake_db.workspaces[workspace_id]["version"] == 2
        (audit,) = fake_db.transactions.values()
        assert (audit["balance_before"], audit["balance_after"]) == (1_500, 1_400)

    @pytest.mark.asyncio
    async def test_conflict_retries_exhausted(self, fake_db, sql_store, workspace_id, now) -> None:
        """Test persistent conflicts raise StorageConflict after max retries."""
        await create_workspace(fake_db, workspace_id, 1_000)
        fake_db.interfere_updates = 10
        buffer = create_transaction_buffer()
        buffer.add(make_entry(workspace_id, -100))

        with pytest.raises(StorageConflict):
            await LedgerCommitter(clock=lambda: now).commit(sql_store, buffer, "req-1")

        assert fake_db.update_attempts == 3
        assert fake_db.transactions == {}

    @pytest.mark.asyncio
    async def test_retry_limit_read_from_settings(self, fake_db, workspace_id, now) -> None:
        """Test the store defaults its retry limit to store_max_retries."""
        store = SqlRecordStore(fake_db.factory, settings=Settings(_env_file=None, store_max_retries=2))
        await create_workspace(fake_db, workspace_id, 1_000)
        fake_db.interfere_updates = 10
        buffer = create_transaction_buffer()
        buffer.add(make_entry(workspace_id, -100))

        with pytest.raises(StorageConflict):
            await LedgerCommitter(clock=lambda: now).commit(store, buffer, "req-1")

        assert fake_db.update_attempts == 2

    @pytest.mark.asyncio
    async def test_get_returns_typed_records(self, fake_db, sql_store, workspace_id, now) -> None:
        """Test get maps rows back to record models."""
        await create_workspace(fake_db, workspace_id, 1_000)
        buffer = create_transaction_buffer()
        buffer.add(make_entry(workspace_id, -100))
        written = await LedgerCommitter(clock=lambda: now).commit(sql_store, buffer, "req-1")

        balance = await sql_store.get(workspace_key(workspace_id))
        assert isinstance(balance, WorkspaceBalance)
        assert balance.balance == 900

        audit_sk = next(r.sk for r in written if r.table == "workspace_credit_transactions")
        audit = await sql_store.get(audit_key(workspace_id, audit_sk))
        assert audit is not None
        assert audit.amount == -100
        assert audit.source == TransactionSource.TEXT_GENERATION


class TestSqlRecordStoreReservations:
    """Test reservations and queries through the SQL store."""

    @pytest.mark.asyncio
    async def test_reserve_and_settle(
        self, fake_db, sql_store, pricing, settings, workspace_id, cost_context, now
    ) -> None:
        """Test a reservation round trip and single-use deletion."""
        await create_workspace(fake_db, workspace_id, 5_000_000)
        manager = ReservationManager(sql_store, pricing, settings=settings, clock=lambda: now)

        handle = await manager.reserve(workspace_id, 1_000_000, cost_context, request_id="req-1")

        assert fake_db.workspaces[workspace_id]["balance"] == 4_000_000
        stored = await sql_store.get(reservation_key(handle.reservation_id))
        assert isinstance(stored, CreditReservation)
        assert stored.expires_at == now + timedelta(seconds=settings.reservation_ttl_seconds)

        buffer = create_transaction_buffer()
        entry = await manager.settle(
            buffer, handle, TokenUsage(model="test/chat-model", prompt_tokens=1_200)
        )
        assert entry is not None
        assert entry.amount == -200_000
        assert fake_db.reservations == {}
        assert await sql_store.delete(reservation_key(handle.reservation_id)) is False

    @pytest.mark.asyncio
    async def test_expired_reservations(
        self, fake_db, sql_store, pricing, settings, workspace_id, cost_context, now
    ) -> None:
        """Test only lapsed reservations are listed, oldest first."""
        await create_workspace(fake_db, workspace_id, 5_000_000)
        early = ReservationManager(sql_store, pricing, settings=settings, clock=lambda: now)
        late = ReservationManager(
            sql_store, pricing, settings=settings, clock=lambda: now + timedelta(hours=1)
        )
        first = await early.reserve(workspace_id, 1_000, cost_context)
        await late.reserve(workspace_id, 1_000, cost_context)

        expired = await sql_store.expired_reservations(now + timedelta(minutes=30))

        assert [r.reservation_id for r in expired] == [first.reservation_id]

    @pytest.mark.asyncio
    async def test_spending_in_window(self, fake_db, sql_store, workspace_id, now) -> None:
        """Test net debits are summed per workspace and agent."""
        await create_workspace(fake_db, workspace_id, 10_000)
        buffer = create_transaction_buffer()
        buffer.add(make_entry(workspace_id, -300, "agent-1"))
        buffer.add(make_entry(workspace_id, -200, "agent-2"))
        buffer.add(make_entry(workspace_id, 50, "agent-1"))
        await LedgerCommitter(clock=lambda: now).commit(sql_store, buffer, "req-1")

        since = now - timedelta(hours=1)
        assert await sql_store.spending_in_window(workspace_id, None, since) == 450
        assert await sql_store.spending_in_window(workspace_id, "agent-1", since) == 250
        assert await sql_store.spending_in_window(workspace_id, None, now + timedelta(seconds=1)) == 0

    @pytest.mark.asyncio
    async def test_delete_only_reservations(self, sql_store, workspace_id) -> None:
        """Test balances and audit records cannot be deleted."""
        with pytest.raises(ValueError):
            await sql_store.delete(workspace_key(workspace_id))

    @pytest.mark.asyncio
    async def test_list_for_workspace_newest_first(self, fake_db, sql_store, workspace_id, now) -> None:
        """Test audit listing pages backwards through sort keys."""
        await create_workspace(fake_db, workspace_id, 10_000)
        buffer = create_transaction_buffer()
        for amount in (-1, -2, -3):
            buffer.add(make_entry(workspace_id, amount))
        await LedgerCommitter(sort_keys=SortKeyGenerator(), clock=lambda: now).commit(
            sql_store, buffer, "req-1"
        )

        async with db_session(fake_db.factory) as session:
            repo = TransactionRepo(session)
            page = await repo.list_for_workspace(workspace_id, limit=2)
            rest = await repo.list_for_workspace(workspace_id, limit=2, before=page[-1].sk)

        assert [r.amount for r in page] == [-3, -2]
        assert [r.amount for r in rest] == [-1]

    @pytest.mark.asyncio
    async def test_duplicate_workspace_conflicts(self, fake_db, workspace_id) -> None:
        """Test inserting an existing workspace surfaces as StorageConflict."""
        await create_workspace(fake_db, workspace_id, 1)
        with pytest.raises(StorageConflict):
            await create_workspace(fake_db, workspace_id, 1)
