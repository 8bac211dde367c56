"""
NutriScan Backend — Barcode Schemas
====================================

What:  Response models for the barcode endpoints.
Who:   Returned by POST /api/barcode/scan and POST /api/barcode/read.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from nutriscan.schemas.product import ProductRecord


class LookupStatus(str, Enum):
    """Outcome of the product lookup that follows a successful decode."""

    FOUND = "found"
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"
    SKIPPED = "skipped"


class ScanResponse(BaseModel):
    """
    Decoded barcode plus the product it resolves to.

    `product` is null both when OFF has no match and when OFF could not be
    reached; `product_lookup` tells the two apart.
    """

    success: bool = True
    barcode: str = Field(description="Decoded symbol text")
    product: Optional[ProductRecord] = None
    product_lookup: LookupStatus = Field(description="found / not_found / unavailable / skipped")
    message: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "success": True,
                    "barcode": "5449000000996",
                    "product": None,
                    "product_lookup": "not_found",
                    "message": "Barcode read, but no matching product was found.",
                }
            ]
        }
    }


class ReadResponse(BaseModel):
    """Decode-only result."""

    success: bool = True
    barcode: str
