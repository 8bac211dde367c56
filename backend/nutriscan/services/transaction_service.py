"""
NutriScan Backend — Transaction Service (Audit Log)
====================================================

What:  Writes and reads the per-user activity log (`transaction_history`).
Why:   The app shows users what they scanned and searched.
How:   Writes run as FastAPI background tasks after the response is sent,
       each with its own session. They never raise: a failed audit write is
       logged and dropped so it can never affect a scan.
Who:   Scan/search routes (writes) and /api/transactions (reads).

Write Rules:
    - user_id, transaction_type and action are required; a record missing
      any of them is skipped with a warning
    - barcode_scan: metadata {barcode, product_id, product_name, found},
      status completed when a product was found, failed otherwise
    - food_search:  metadata {query, result_count}
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from nutriscan.database import session_scope
from nutriscan.exceptions import DatabaseError, NotFoundError, ValidationError
from nutriscan.models.transaction import TRANSACTION_STATUSES, Transaction
from nutriscan.schemas.product import ProductRecord
from nutriscan.schemas.transaction import TransactionListResponse, TransactionResponse

logger = logging.getLogger(__name__)


class TransactionService:
    """Audit log writer and reader. Stateless."""

    def __init__(self, session_factory=session_scope):
        # Context-manager factory yielding an AsyncSession; swapped in tests
        self.session_factory = session_factory

    # ══════════════════════════════════════════════════════════════════════
    # Writes (fire-and-forget)
    # ══════════════════════════════════════════════════════════════════════

    async def log_transaction(
        self,
        user_id: Optional[str],
        transaction_type: Optional[str],
        action: Optional[str],
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        status: str = "completed",
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[Transaction]:
        """
        Insert one audit record.

        Returns the stored record, or None when it was skipped or the
        insert failed. Never raises.
        """
        if not user_id or not transaction_type or not action:
            logger.warning(
                "Skipping audit record with missing fields (user_id=%s, type=%s, action=%s)",
                bool(user_id),
                transaction_type,
                action,
            )
            return None

        if status not in TRANSACTION_STATUSES:
            logger.warning("Unknown audit status %r, storing as 'completed'", status)
            status = "completed"

        record = Transaction(
            user_id=user_id,
            transaction_type=transaction_type,
            action=action,
            description=description,
            details=metadata or {},
            status=status,
            ip_address=ip_address,
            user_agent=user_agent,
        )

        try:
            async with self.session_factory() as session:
                session.add(record)
                await session.flush()
        except (SQLAlchemyError, OSError) as e:
            logger.error(
                "Failed to write %s audit record for user %s: %s",
                transaction_type,
                user_id,
                e,
                exc_info=True,
            )
            return None

        logger.info("Audit record %s written (%s/%s)", record.id, transaction_type, status)
        return record

    async def log_barcode_scan(
        self,
        user_id: Optional[str],
        barcode: str,
        product: Optional[ProductRecord],
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[Transaction]:
        found = product is not None
        return await self.log_transaction(
            user_id=user_id,
            transaction_type="barcode_scan",
            action="scan_barcode",
            description=f"Scanned barcode {barcode}" + (f": {product.name}" if found else ""),
            metadata={
                "barcode": barcode,
                "product_id": product.id if found else None,
                "product_name": product.name if found else None,
                "found": found,
            },
            status="completed" if found else "failed",
            ip_address=ip_address,
            user_agent=user_agent,
        )

    async def log_food_search(
        self,
        user_id: Optional[str],
        query: str,
        result_count: int,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[Transaction]:
        return await self.log_transaction(
            user_id=user_id,
            transaction_type="food_search",
            action="search_food",
            description=f"Searched for '{query}'",
            metadata={"query": query, "result_count": result_count},
            status="completed",
            ip_address=ip_address,
            user_agent=user_agent,
        )

    # ══════════════════════════════════════════════════════════════════════
    # Reads
    # ══════════════════════════════════════════════════════════════════════

    async def list_transactions(
        self,
        db: AsyncSession,
        user_id: Optional[str],
        transaction_type: Optional[str] = None,
        status: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> TransactionListResponse:
        """
        Newest-first page of one user's audit records.

        Records of other users are never returned, so `user_id` is required.
        The date bounds are inclusive.

        Raises:
            ValidationError: missing user_id, unknown status, limit outside
                1..100 or negative offset.
            DatabaseError: query failed.
        """
        if not user_id or not user_id.strip():
            raise ValidationError(message="user_id is required", field="user_id")
        if status is not None and status not in TRANSACTION_STATUSES:
            raise ValidationError(
                message=f"status must be one of: {', '.join(TRANSACTION_STATUSES)}",
                field="status",
            )
        if not 1 <= limit <= 100:
            raise ValidationError(message="limit must be between 1 and 100", field="limit")
        if offset < 0:
            raise ValidationError(message="offset must not be negative", field="offset")

        filters = [Transaction.user_id == user_id.strip()]
        if transaction_type:
            filters.append(Transaction.transaction_type == transaction_type)
        if status:
            filters.append(Transaction.status == status)
        if start_date is not None:
            filters.append(Transaction.created_at >= start_date)
        if end_date is not None:
            filters.append(Transaction.created_at <= end_date)

        try:
            query = (
                select(Transaction)
                .where(*filters)
                .order_by(desc(Transaction.created_at))
                .limit(limit)
                .offset(offset)
            )
            result = await db.execute(query)
            records = list(result.scalars().all())

            count_result = await db.execute(select(func.count(Transaction.id)).where(*filters))
            total_count = count_result.scalar() or 0
        except SQLAlchemyError as e:
            logger.error("Database error listing transactions: %s", e, exc_info=True)
            raise DatabaseError(
                message="Could not retrieve transaction history. Please try again.",
                context={"error_type": type(e).__name__},
            ) from e

        return TransactionListResponse(
            transactions=[TransactionResponse.model_validate(r) for r in records],
            total_count=total_count,
            has_more=offset + len(records) < total_count,
        )

    async def get_transaction(self, db: AsyncSession, transaction_id: UUID) -> TransactionResponse:
        """
        Raises:
            NotFoundError: no record with this id.
            DatabaseError: query failed.
        """
        try:
            result = await db.execute(select(Transaction).where(Transaction.id == transaction_id))
            record = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Database error fetching transaction %s: %s", transaction_id, e)
            raise DatabaseError(
                message="Could not retrieve the transaction. Please try again.",
                context={"transaction_id": str(transaction_id)},
            ) from e

        if record is None:
            raise NotFoundError(resource="transaction", resource_id=str(transaction_id))
        return TransactionResponse.model_validate(record)


# Singleton instance
transaction_service = TransactionService()
