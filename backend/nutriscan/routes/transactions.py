"""
NutriScan Backend — Transaction History Routes
===============================================

What:  GET /api/transactions (one user's records, filtered, offset-paginated)
       and GET /api/transactions/{id}.
Who:   Called by the app's activity history screen.

user_id is required on the list; without it the request is a 400
validation_error rather than a dump of every user's history.

The list sets X-Total-Count so pagination UIs can show "1-20 of 157"
without counting items themselves.
"""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from nutriscan.database import get_db_session
from nutriscan.schemas.common import ErrorResponse
from nutriscan.schemas.transaction import TransactionListResponse, TransactionResponse
from nutriscan.services.transaction_service import transaction_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/transactions", tags=["Transactions"])


@router.get(
    "",
    response_model=TransactionListResponse,
    responses={
        400: {"description": "Missing user_id or bad filter", "model": ErrorResponse},
        500: {"description": "Server error", "model": ErrorResponse},
    },
    summary="List a user's audit records, newest first",
)
async def list_transactions(
    response: Response,
    user_id: Optional[str] = Query(None, description="Whose records to list (required)"),
    transaction_type: Optional[str] = Query(
        None, description="Only records of this type, e.g. barcode_scan"
    ),
    status: Optional[str] = Query(None, description="pending, completed, failed or cancelled"),
    start_date: Optional[datetime] = Query(None, description="Created at or after (ISO 8601)"),
    end_date: Optional[datetime] = Query(None, description="Created at or before (ISO 8601)"),
    limit: int = Query(50, ge=1, le=100, description="Items per page (max 100)"),
    offset: int = Query(0, ge=0, description="Records to skip"),
    db: AsyncSession = Depends(get_db_session),
) -> TransactionListResponse:
    result = await transaction_service.list_transactions(
        db=db,
        user_id=user_id,
        transaction_type=transaction_type,
        status=status,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    response.headers["X-Total-Count"] = str(result.total_count)
    return result


@router.get(
    "/{transaction_id}",
    response_model=TransactionResponse,
    responses={404: {"description": "Not found", "model": ErrorResponse}},
    summary="Get a single audit record",
)
async def get_transaction(
    transaction_id: UUID,
    response: Response,
    db: AsyncSession = Depends(get_db_session),
) -> TransactionResponse:
    result = await transaction_service.get_transaction(db=db, transaction_id=transaction_id)
    # Records never change once written
    response.headers["Cache-Control"] = "private, max-age=3600"
    return result
