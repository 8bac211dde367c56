"""
NutriScan Backend — Health Check Route
=======================================

What:  GET /health for Docker health checks and load balancers.
How:   SELECT 1 against the database, plus the OpenFoodFacts circuit state
       (no network call, so the check stays cheap).

Status levels:
    healthy   database reachable, OFF circuit closed
    degraded  OFF circuit open or half-open; scans still decode
    unhealthy database unreachable (audit log and history are down)
"""

import logging
import time

from fastapi import APIRouter, Depends

from nutriscan import __version__
from nutriscan.database import check_database
from nutriscan.schemas.common import HealthResponse
from nutriscan.services.openfoodfacts import OpenFoodFactsClient, get_openfoodfacts_client

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(
    client: OpenFoodFactsClient = Depends(get_openfoodfacts_client),
) -> HealthResponse:
    db_status = "connected"
    overall = "healthy"

    try:
        await check_database()
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", e)

    off_status = client.status()
    if off_status != "closed" and overall == "healthy":
        overall = "degraded"

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        openfoodfacts=off_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
