"""
NutriScan Backend — Shared Response Schemas
============================================

What:  Error body and health check shapes shared by every route.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    Standard error body returned by the global exception handlers.

    Example:
        {
            "success": false,
            "error": "no_barcode_found",
            "message": "No barcode could be read from the image.",
            "hint": "Make sure the barcode is sharp, ...",
            "request_id": "550e8400-e29b-41d4-a716-446655440000"
        }

    `debug` is only present when the server runs with DEBUG=true.
    """

    success: bool = False
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    hint: Optional[str] = Field(default=None, description="What the user can do about it")
    details: Optional[Dict[str, Any]] = Field(default=None, description="Field-level validation errors")
    debug: Optional[Dict[str, Any]] = Field(default=None, description="Diagnostics (debug mode only)")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """
    Service and dependency status for monitoring and load balancers.

    A backend that cannot reach its database is degraded even if the
    process is up.
    """

    status: str = Field(description="Overall service status: healthy, degraded")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    openfoodfacts: str = Field(description="OpenFoodFacts circuit state: closed, open, half_open")
    uptime_seconds: float = Field(description="Seconds since service started")
