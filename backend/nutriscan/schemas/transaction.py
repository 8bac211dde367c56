"""
NutriScan Backend — Transaction Schemas
========================================

What:  API shapes for the audit log read endpoints.
Who:   Returned by GET /api/transactions and GET /api/transactions/{id}.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class TransactionResponse(BaseModel):
    """One audit record. `metadata` is read from the model's `details` column."""

    id: uuid.UUID
    user_id: str
    transaction_type: str = Field(description="e.g. barcode_scan, food_search")
    action: str
    description: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="details")
    status: str = Field(description="pending, completed, failed, cancelled")
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True, "populate_by_name": True}


class TransactionListResponse(BaseModel):
    """
    Offset-paginated list, newest first.

    `has_more` is true when offset + len(transactions) < total_count.
    """

    transactions: List[TransactionResponse]
    total_count: int = Field(description="Total records matching the filters")
    has_more: bool
