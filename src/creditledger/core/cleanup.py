"""Refund of reservations that were never settled."""

import logging
from datetime import datetime, timezone

from creditledger.core.committer import LedgerCommitter
from creditledger.core.context import CreditTransactionContext
from creditledger.core.reservations import ReservationManager
from creditledger.db.store import RecordStore

logger = logging.getLogger(__name__)


async def cleanup_expired_reservations(
    store: RecordStore,
    manager: ReservationManager,
    request_id: str,
    now: datetime | None = None,
    limit: int = 100,
    committer: LedgerCommitter | None = None,
) -> int:
    """Refund every reservation whose TTL has passed.

    All refunds go through one buffer and are committed once.

    Args:
        store: Record store holding reservations
        manager: Reservation manager performing the refunds
        request_id: Invocation id of the sweep, stamped on audit records
        now: Timestamp to compare against (defaults to current UTC time)
        limit: Maximum reservations handled per sweep

    Returns:
        Number of reservations refunded
    """
    if now is None:
        now = datetime.now(timezone.utc)
    expired = await store.expired_reservations(now, limit=limit)
    if not expired:
        logger.info("No expired reservations found")
        return 0

    context = CreditTransactionContext(store, request_id, committer)
    refunded = 0
    for reservation in expired:
        entry = await manager.refund(context.buffer, reservation.reservation_id)
        if entry is not None:
            refunded += 1
    await context.commit()
    logger.info("Refunded expired reservations: found=%d refunded=%d", len(expired), refunded)
    return refunded
