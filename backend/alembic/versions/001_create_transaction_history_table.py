"""Create transaction_history table

Revision ID: 001
Revises: None
Create Date: 2025-01-20 00:00:00.000000+00:00

What:  The per-user audit log of barcode scans and food searches.
How:   PostgreSQL UUID primary key, JSONB metadata, timestamptz.

Rollback: downgrade() drops the table and all audit history with it.
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "transaction_history",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(255), nullable=False, comment="Identity provider user id"),
        sa.Column("transaction_type", sa.String(50), nullable=False),
        sa.Column("action", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "metadata",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'completed'"),
            comment="pending, completed, failed, cancelled",
        ),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('pending', 'completed', 'failed', 'cancelled')",
            name="ck_transaction_history_status",
        ),
    )

    # "My recent activity": WHERE user_id = :id ORDER BY created_at DESC
    op.create_index(
        "idx_transaction_history_user_created",
        "transaction_history",
        ["user_id", sa.text("created_at DESC")],
    )
    op.create_index(
        "idx_transaction_history_type",
        "transaction_history",
        ["transaction_type"],
    )


def downgrade() -> None:
    op.drop_index("idx_transaction_history_type", table_name="transaction_history")
    op.drop_index("idx_transaction_history_user_created", table_name="transaction_history")
    op.drop_table("transaction_history")
