"""Initial schema with workspace balances, credit audit trail and reservations.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # A) workspaces
    op.create_table(
        "workspaces",
        sa.Column("workspace_id", sa.Text(), primary_key=True),
        sa.Column("balance", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("version", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    # B) workspace_credit_transactions (insert-only audit trail)
    op.create_table(
        "workspace_credit_transactions",
        sa.Column("workspace_id", sa.Text(), sa.ForeignKey("workspaces.workspace_id"), nullable=False),
        sa.Column("sort_key", sa.Text(), nullable=False),
        sa.Column("request_id", sa.Text(), nullable=False),
        sa.Column("agent_id", sa.Text(), nullable=True),
        sa.Column("conversation_id", sa.Text(), nullable=True),
        sa.Column("source", sa.Text(), nullable=False),
        sa.Column("supplier", sa.Text(), nullable=False),
        sa.Column("model", sa.Text(), nullable=True),
        sa.Column("tool_call", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("balance_before", sa.BigInteger(), nullable=False),
        sa.Column("balance_after", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("workspace_id", "sort_key", name="pk_workspace_credit_transactions"),
        sa.CheckConstraint(
            "source IN ('embedding-generation', 'text-generation', 'tool-execution')",
            name="ck_workspace_credit_transactions_source",
        ),
        sa.CheckConstraint(
            "balance_after = balance_before + amount",
            name="ck_workspace_credit_transactions_chain",
        ),
    )
    op.create_index(
        "ix_workspace_credit_transactions_window",
        "workspace_credit_transactions",
        ["workspace_id", "created_at"],
    )
    op.create_index(
        "ix_workspace_credit_transactions_agent_window",
        "workspace_credit_transactions",
        ["workspace_id", "agent_id", "created_at"],
    )
    op.create_index(
        "ix_workspace_credit_transactions_request",
        "workspace_credit_transactions",
        ["request_id"],
    )

    # C) credit_reservations
    op.create_table(
        "credit_reservations",
        sa.Column("reservation_id", sa.Text(), primary_key=True),
        sa.Column("workspace_id", sa.Text(), sa.ForeignKey("workspaces.workspace_id"), nullable=False),
        sa.Column("agent_id", sa.Text(), nullable=True),
        sa.Column("conversation_id", sa.Text(), nullable=True),
        sa.Column("source", sa.Text(), nullable=False),
        sa.Column("supplier", sa.Text(), nullable=False),
        sa.Column("model", sa.Text(), nullable=True),
        sa.Column("tool_call", sa.Text(), nullable=True),
        sa.Column("reserved_amount", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("expires_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.CheckConstraint("reserved_amount > 0", name="ck_credit_reservations_amount"),
    )
    op.create_index("ix_credit_reservations_expires_at", "credit_reservations", ["expires_at"])
    op.create_index("ix_credit_reservations_workspace_id", "credit_reservations", ["workspace_id"])


def downgrade() -> None:
    op.drop_table("credit_reservations")
    op.drop_table("workspace_credit_transactions")
    op.drop_table("workspaces")
