"""Two-phase hold protocol for operations whose cost is known only afterwards.

``reserve`` debits the estimated cost up front (one atomic write of the
balance, the reservation and an audit record of the hold). ``settle`` and
``refund`` never touch balances directly: they enqueue a single correcting
entry into the request's TransactionBuffer, which the LedgerCommitter
applies at the end of the request.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from creditledger.contracts.enums import ReservationSentinel
from creditledger.contracts.models import (
    CostContext,
    LedgerEntry,
    ProviderCost,
    ReservationHandle,
    TokenUsage,
    is_sentinel,
)
from creditledger.core.buffer import TransactionBuffer
from creditledger.core.money import format_amount
from creditledger.core.pricing import PricingOracle
from creditledger.core.sort_keys import SortKeyGenerator
from creditledger.core.spending_limits import SpendingLimitGate
from creditledger.db.records import (
    CreditReservation,
    LedgerAuditRecord,
    StoredRecord,
    WorkspaceBalance,
    audit_key,
    reservation_key,
    reservation_pk,
    workspace_key,
    workspace_pk,
)
from creditledger.db.store import FetchedRecords, RecordStore
from creditledger.errors import InsufficientCredits, SpendingLimitExceeded, WorkspaceNotFound
from creditledger.settings import Settings, get_settings

logger = logging.getLogger(__name__)

ReservationRef = str | ReservationHandle


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _reservation_id(ref: ReservationRef) -> str:
    return ref.reservation_id if isinstance(ref, ReservationHandle) else ref


class ReservationManager:
    """Reserve, settle and refund estimated costs.

    Collaborators are injected: the record store, the pricing oracle used at
    settlement, and an optional spending limit gate.
    """

    def __init__(
        self,
        store: RecordStore,
        pricing: PricingOracle,
        gate: SpendingLimitGate | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
        sort_keys: SortKeyGenerator | None = None,
    ) -> None:
        self._store = store
        self._pricing = pricing
        self._gate = gate
        self._settings = settings or get_settings()
        self._clock = clock or _utcnow
        self._sort_keys = sort_keys or SortKeyGenerator()

    async def reserve(
        self,
        workspace_id: str,
        estimated_amount: int,
        cost_context: CostContext,
        request_id: str | None = None,
    ) -> ReservationHandle:
        """Hold estimated_amount against the workspace balance.

        Args:
            workspace_id: Workspace to charge
            estimated_amount: Estimated cost in nano-units
            cost_context: Attribution of the metered operation
            request_id: Invocation id for the audit record of the hold
                (defaults to the reservation id)

        Returns:
            Handle for the reservation, or a sentinel handle when no
            workspace charge applies

        Raises:
            SpendingLimitExceeded: If the estimate breaches a limit; nothing
                is written
            WorkspaceNotFound: If the workspace balance record is absent
            InsufficientCredits: If credit validation is enabled and the
                balance cannot cover the estimate
        """
        if cost_context.byok:
            logger.info("BYOK request, skipping credit reservation: workspace=%s", workspace_id)
            return self._sentinel(ReservationSentinel.BYOK, workspace_id, cost_context)

        if estimated_amount <= 0:
            if estimated_amount < 0:
                logger.warning(
                    "Negative estimated cost, treating as zero-cost: workspace=%s estimated=%d",
                    workspace_id,
                    estimated_amount,
                )
            return self._sentinel(ReservationSentinel.ZERO_COST, workspace_id, cost_context)

        if self._gate is not None and self._settings.enable_spending_limit_checks:
            result = await self._gate.check(workspace_id, cost_context.agent_id, estimated_amount)
            if not result.passed:
                raise SpendingLimitExceeded(
                    workspace_id, result.failed_limits, agent_id=cost_context.agent_id
                )

        reservation_id = str(uuid4())
        request_id = request_id or reservation_id
        now = self._clock()
        reservation = CreditReservation(
            pk=reservation_pk(reservation_id),
            reservation_id=reservation_id,
            workspace_id=workspace_id,
            agent_id=cost_context.agent_id,
            conversation_id=cost_context.conversation_id,
            source=cost_context.source,
            supplier=cost_context.supplier,
            model=cost_context.model,
            tool_call=cost_context.tool_call,
            reserved_amount=estimated_amount,
            created_at=now,
            expires_at=now + timedelta(seconds=self._settings.reservation_ttl_seconds),
        )
        sort_key = self._sort_keys.next_key(now)
        check_balance = self._settings.enable_credit_validation

        def build(fetched: FetchedRecords) -> list[StoredRecord]:
            workspace = fetched.get("workspace")
            if not isinstance(workspace, WorkspaceBalance):
                raise WorkspaceNotFound(workspace_id, request_id)
            if check_balance and workspace.balance < estimated_amount:
                raise InsufficientCredits(
                    workspace_id,
                    estimated_amount,
                    workspace.balance,
                    agent_id=cost_context.agent_id,
                )
            new_balance = workspace.balance - estimated_amount
            hold = LedgerAuditRecord(
                pk=workspace_pk(workspace_id),
                sk=sort_key,
                request_id=request_id,
                workspace_id=workspace_id,
                agent_id=cost_context.agent_id,
                conversation_id=cost_context.conversation_id,
                source=cost_context.source,
                supplier=cost_context.supplier,
                model=cost_context.model,
                tool_call=cost_context.tool_call,
                description=f"Credit reservation {reservation_id}",
                amount=-estimated_amount,
                balance_before=workspace.balance,
                balance_after=new_balance,
                created_at=now,
            )
            return [
                workspace.model_copy(
                    update={
                        "balance": new_balance,
                        "version": workspace.version + 1,
                        "updated_at": now,
                    }
                ),
                reservation,
                hold,
            ]

        await self._store.atomic_update(
            {
                "workspace": workspace_key(workspace_id),
                "reservation": reservation_key(reservation_id),
                "transaction-0": audit_key(workspace_id, sort_key),
            },
            build,
        )
        logger.info(
            "Reserved credits: workspace=%s reservation=%s amount=%s",
            workspace_id,
            reservation_id,
            format_amount(estimated_amount),
        )
        return ReservationHandle(
            reservation_id=reservation_id,
            reserved_amount=estimated_amount,
            workspace_id=workspace_id,
            agent_id=cost_context.agent_id,
            conversation_id=cost_context.conversation_id,
        )

    async def settle(
        self,
        buffer: TransactionBuffer,
        reservation: ReservationRef,
        usage: TokenUsage | ProviderCost,
    ) -> LedgerEntry | None:
        """Reconcile a reservation with the actual cost.

        Enqueues one entry of ``reserved - actual``: negative charges the
        overrun, positive credits back the unused part of the hold.

        Returns:
            The enqueued entry, or None for sentinels and reservations that
            were already finalized
        """
        reservation_id = _reservation_id(reservation)
        if is_sentinel(reservation_id):
            return None

        record = await self._load(reservation_id, "settle")
        if record is None:
            return None

        actual = self._pricing.cost_of(usage)
        delta = actual - record.reserved_amount
        model = usage.model if isinstance(usage, TokenUsage) else record.model
        entry = LedgerEntry(
            workspace_id=record.workspace_id,
            agent_id=record.agent_id,
            conversation_id=record.conversation_id,
            source=record.source,
            supplier=record.supplier,
            model=model,
            tool_call=record.tool_call,
            description=(
                f"Reservation {reservation_id} settled: reserved "
                f"{format_amount(record.reserved_amount)}, actual {format_amount(actual)}"
            ),
            amount=-delta,
        )
        return await self._finalize(buffer, record, entry, "settle")

    async def refund(
        self,
        buffer: TransactionBuffer,
        reservation: ReservationRef,
    ) -> LedgerEntry | None:
        """Credit back the whole hold of an operation that never completed."""
        reservation_id = _reservation_id(reservation)
        if is_sentinel(reservation_id):
            return None

        record = await self._load(reservation_id, "refund")
        if record is None:
            return None

        entry = LedgerEntry(
            workspace_id=record.workspace_id,
            agent_id=record.agent_id,
            conversation_id=record.conversation_id,
            source=record.source,
            supplier=record.supplier,
            model=record.model,
            tool_call=record.tool_call,
            description=f"Reservation {reservation_id} refunded",
            amount=record.reserved_amount,
        )
        return await self._finalize(buffer, record, entry, "refund")

    async def _load(self, reservation_id: str, operation: str) -> CreditReservation | None:
        record = await self._store.get(reservation_key(reservation_id))
        if not isinstance(record, CreditReservation):
            logger.warning(
                "Reservation not found on %s, assuming already processed: reservation=%s",
                operation,
                reservation_id,
            )
            return None
        return record

    async def _finalize(
        self,
        buffer: TransactionBuffer,
        record: CreditReservation,
        entry: LedgerEntry,
        operation: str,
    ) -> LedgerEntry | None:
        # Only the call that removes the reservation may enqueue its entry.
        if not await self._store.delete(reservation_key(record.reservation_id)):
            logger.warning(
                "Reservation removed concurrently on %s, skipping: reservation=%s",
                operation,
                record.reservation_id,
            )
            return None
        buffer.add(entry)
        logger.info(
            "Reservation %s: workspace=%s reservation=%s amount=%s",
            operation,
            record.workspace_id,
            record.reservation_id,
            format_amount(entry.amount),
        )
        return entry

    @staticmethod
    def _sentinel(
        sentinel: ReservationSentinel,
        workspace_id: str,
        cost_context: CostContext,
    ) -> ReservationHandle:
        return ReservationHandle(
            reservation_id=sentinel.value,
            reserved_amount=0,
            workspace_id=workspace_id,
            agent_id=cost_context.agent_id,
            conversation_id=cost_context.conversation_id,
        )
