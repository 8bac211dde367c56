"""
NutriScan Backend — Transaction History Model
==============================================

What:  ORM model for the `transaction_history` audit table.
Why:   Every barcode scan and food search a signed-in user makes is recorded
       so the app can show an activity history.
Who:   Written by TransactionService (background tasks); read by the
       /api/transactions routes; Alembic migrates it.

Table Notes:
    - user_id is the identity provider's user id, stored verbatim (no FK;
      users live in the external auth service)
    - metadata is JSONB; the Python attribute is `details` because
      `metadata` is reserved on declarative classes
    - status is a short string: pending / completed / failed / cancelled
    - (user_id, created_at DESC) serves "my recent activity"
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import Index, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from nutriscan.database import Base

TRANSACTION_STATUSES = ("pending", "completed", "failed", "cancelled")


class Transaction(Base):
    """One audit record. Immutable once written."""

    __tablename__ = "transaction_history"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )

    user_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Identity provider user id",
    )

    # e.g. barcode_scan, food_search
    transaction_type: Mapped[str] = mapped_column(String(50), nullable=False)

    action: Mapped[str] = mapped_column(String(255), nullable=False)

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True, default=None)

    details: Mapped[Dict[str, Any]] = mapped_column(
        "metadata",
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="completed",
        server_default=text("'completed'"),
        comment="pending, completed, failed, cancelled",
    )

    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True, default=None)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True, default=None)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        Index("idx_transaction_history_user_created", user_id, created_at.desc()),
        Index("idx_transaction_history_type", transaction_type),
    )

    def __repr__(self) -> str:
        return (
            f"<Transaction(id={self.id}, type='{self.transaction_type}', "
            f"status='{self.status}', user_id='{self.user_id}')>"
        )
