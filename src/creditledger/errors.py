"""Ledger error taxonomy."""

from creditledger.contracts.models import FailedLimit


class LedgerError(Exception):
    """Base class for credit ledger failures."""


class WorkspaceNotFound(LedgerError):
    """Raised when a workspace balance record is absent.

    Fatal for the whole commit: nothing is written for any workspace.
    """

    def __init__(self, workspace_id: str, request_id: str | None = None) -> None:
        message = f"Workspace {workspace_id} not found"
        if request_id:
            message = f"{message} (requestId: {request_id})"
        super().__init__(message)
        self.workspace_id = workspace_id
        self.request_id = request_id


class SpendingLimitExceeded(LedgerError):
    """Raised before a reservation exists when an estimate breaches a limit."""

    def __init__(
        self,
        workspace_id: str,
        failed_limits: list[FailedLimit],
        agent_id: str | None = None,
    ) -> None:
        summary = ", ".join(f"{f.scope.value}/{f.time_frame.value}" for f in failed_limits)
        super().__init__(f"Spending limit exceeded for workspace {workspace_id}: {summary}")
        self.workspace_id = workspace_id
        self.failed_limits = failed_limits
        self.agent_id = agent_id


class InsufficientCredits(LedgerError):
    """Raised when a workspace balance cannot cover a reservation."""

    def __init__(
        self,
        workspace_id: str,
        required: int,
        available: int,
        agent_id: str | None = None,
    ) -> None:
        super().__init__(
            f"Insufficient credits in workspace {workspace_id}: "
            f"required {required}, available {available}"
        )
        self.workspace_id = workspace_id
        self.required = required
        self.available = available
        self.agent_id = agent_id


class StorageConflict(LedgerError):
    """Transient optimistic-concurrency conflict reported by a store."""


class UnknownModel(LedgerError):
    """Raised by the price table for a model it has no prices for."""

    def __init__(self, model: str) -> None:
        super().__init__(f"No pricing configured for model {model}")
        self.model = model
