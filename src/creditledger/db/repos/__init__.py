"""Repository classes for database access."""

from creditledger.db.repos.base import BaseRepo
from creditledger.db.repos.reservation import ReservationRepo
from creditledger.db.repos.transaction import TransactionRepo
from creditledger.db.repos.workspace import WorkspaceRepo

__all__ = [
    "BaseRepo",
    "ReservationRepo",
    "TransactionRepo",
    "WorkspaceRepo",
]
