"""Request-scoped credit transaction context."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from creditledger.contracts.models import LedgerEntry
from creditledger.core.buffer import TransactionBuffer, create_transaction_buffer
from creditledger.core.committer import LedgerCommitter
from creditledger.core.idempotency import CommitIdempotency
from creditledger.db.records import StoredRecord
from creditledger.db.store import RecordStore

logger = logging.getLogger(__name__)


class CreditTransactionContext:
    """Owns the TransactionBuffer of one request and commits it once."""

    def __init__(
        self,
        store: RecordStore,
        request_id: str,
        committer: LedgerCommitter | None = None,
        idempotency: CommitIdempotency | None = None,
    ) -> None:
        self.store = store
        self.request_id = request_id
        self.buffer: TransactionBuffer = create_transaction_buffer()
        self._committer = committer or LedgerCommitter()
        self._idempotency = idempotency
        self._committed = False

    @property
    def committed(self) -> bool:
        return self._committed

    def add_transaction(self, entry: LedgerEntry) -> bool:
        """Buffer an entry for the end-of-request commit."""
        if self._committed:
            raise RuntimeError(f"Transactions for request {self.request_id} already committed")
        return self.buffer.add(entry)

    async def commit(self) -> list[StoredRecord]:
        """Commit the buffer; may be called only once per request."""
        if self._committed:
            raise RuntimeError(f"Transactions for request {self.request_id} already committed")
        self._committed = True

        if not self.buffer:
            logger.debug("No transactions to commit: request=%s", self.request_id)
            return []

        if self._idempotency is not None and await self._idempotency.already_committed(
            self.request_id
        ):
            logger.warning(
                "Transactions already committed for request, skipping: request=%s",
                self.request_id,
            )
            return []

        logger.info(
            "Committing transactions: request=%s workspaces=%d entries=%d",
            self.request_id,
            len(self.buffer),
            self.buffer.total_entries(),
        )
        written = await self._committer.commit(self.store, self.buffer, self.request_id)
        if self._idempotency is not None:
            await self._idempotency.mark_committed(self.request_id)
        return written


@asynccontextmanager
async def credit_transactions(
    store: RecordStore,
    request_id: str,
    committer: LedgerCommitter | None = None,
    idempotency: CommitIdempotency | None = None,
) -> AsyncGenerator[CreditTransactionContext, None]:
    """Yield a request context and commit its buffer on exit.

    The commit runs on both the success and the failure branch, so refunds
    enqueued while handling an error are applied. On the failure branch the
    original exception propagates after the commit. If that commit fails too,
    the original exception is re-raised with the commit error as its cause.
    """
    context = CreditTransactionContext(store, request_id, committer, idempotency)
    try:
        yield context
    except Exception as error:
        if not context.committed:
            try:
                await context.commit()
            except Exception as commit_error:
                logger.exception(
                    "Commit failed while handling request error: request=%s", request_id
                )
                error.add_note(f"Ledger commit for request {request_id} failed: {commit_error!r}")
                raise error from commit_error
        raise
    if not context.committed:
        await context.commit()
