"""Credit reservation repository."""

from datetime import datetime

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from creditledger.db.records import (
    RESERVATIONS_TABLE,
    CreditReservation,
    RecordKey,
    StoredRecord,
    id_from_pk,
    reservation_pk,
)
from creditledger.db.repos.base import BaseRepo
from creditledger.errors import StorageConflict

_COLUMNS = """
    reservation_id, workspace_id, agent_id, conversation_id, source, supplier,
    model, tool_call, reserved_amount, created_at, expires_at
"""


class ReservationRepo(BaseRepo):
    """Repository for credit_reservations table."""

    table = RESERVATIONS_TABLE

    async def create_reservation(self, record: CreditReservation) -> None:
        """Insert a new reservation."""
        try:
            await self.session.execute(
                text("""
                    INSERT INTO credit_reservations (
                        reservation_id, workspace_id, agent_id, conversation_id, source,
                        supplier, model, tool_call, reserved_amount, created_at, expires_at
                    )
                    VALUES (
                        :reservation_id, :workspace_id, :agent_id, :conversation_id, :source,
                        :supplier, :model, :tool_call, :reserved_amount, :created_at, :expires_at
                    )
                """),
                {
                    "reservation_id": record.reservation_id,
                    "workspace_id": record.workspace_id,
                    "agent_id": record.agent_id,
                    "conversation_id": record.conversation_id,
                    "source": record.source.value,
                    "supplier": record.supplier.value,
                    "model": record.model,
                    "tool_call": record.tool_call,
                    "reserved_amount": record.reserved_amount,
                    "created_at": record.created_at,
                    "expires_at": record.expires_at,
                },
            )
        except IntegrityError as exc:
            raise StorageConflict(f"Reservation {record.reservation_id} already exists") from exc

    async def get_by_id(self, reservation_id: str) -> CreditReservation | None:
        """Get reservation by ID."""
        result = await self.session.execute(
            text(f"""
                SELECT {_COLUMNS}
                FROM credit_reservations
                WHERE reservation_id = :reservation_id
            """),
            {"reservation_id": reservation_id},
        )
        row = result.mappings().fetchone()
        return self._to_record(row) if row else None

    async def get(self, key: RecordKey) -> CreditReservation | None:
        return await self.get_by_id(id_from_pk(key.pk))

    async def put(self, record: StoredRecord, previous: StoredRecord | None) -> None:
        if not isinstance(record, CreditReservation):
            raise TypeError(f"ReservationRepo cannot store {type(record).__name__}")
        if previous is not None:
            raise StorageConflict(f"Reservation {record.reservation_id} already exists")
        await self.create_reservation(record)

    async def delete(self, reservation_id: str) -> bool:
        """Delete reservation; False if another caller already removed it."""
        result = await self.session.execute(
            text("""
                DELETE FROM credit_reservations
                WHERE reservation_id = :reservation_id
            """),
            {"reservation_id": reservation_id},
        )
        return result.rowcount > 0

    async def list_expired(self, now: datetime, limit: int = 100) -> list[CreditReservation]:
        """List reservations whose hold has lapsed, oldest expiry first.

        Args:
            now: Timestamp to compare against
            limit: Maximum number of reservations

        Returns:
            Expired reservations
        """
        result = await self.session.execute(
            text(f"""
                SELECT {_COLUMNS}
                FROM credit_reservations
                WHERE expires_at < :now
                ORDER BY expires_at ASC
                LIMIT :limit
            """),
            {"now": now, "limit": limit},
        )
        return [self._to_record(row) for row in result.mappings().fetchall()]

    @staticmethod
    def _to_record(row) -> CreditReservation:
        data = dict(row)
        return CreditReservation(pk=reservation_pk(data["reservation_id"]), **data)
