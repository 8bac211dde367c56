"""
NutriScan Backend — OpenFoodFacts Proxy Routes
===============================================

What:  GET /api/openfoodfacts/product/{barcode} and
       GET /api/openfoodfacts/search.
Why:   The app never talks to OFF directly; it gets the same reshaped
       product records the scan endpoint returns.
Who:   Called by the food search screen and the product detail screen.

Status Codes:
    200  found / search results (possibly empty)
    400  blank search query
    404  barcode unknown to OFF
    503  OFF unreachable, 5xx, or circuit open
    504  OFF did not answer in time
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Path, Query, Request

from nutriscan.exceptions import NotFoundError
from nutriscan.schemas.common import ErrorResponse
from nutriscan.schemas.product import ProductResponse, ProductSearchResponse
from nutriscan.services.openfoodfacts import OpenFoodFactsClient, get_openfoodfacts_client
from nutriscan.services.transaction_service import transaction_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/openfoodfacts", tags=["OpenFoodFacts"])

_UPSTREAM_ERRORS = {
    503: {"description": "OpenFoodFacts unavailable", "model": ErrorResponse},
    504: {"description": "OpenFoodFacts timed out", "model": ErrorResponse},
}


@router.get(
    "/product/{barcode}",
    response_model=ProductResponse,
    responses={404: {"description": "Unknown barcode", "model": ErrorResponse}, **_UPSTREAM_ERRORS},
    summary="Look up a product by barcode",
)
async def get_product(
    barcode: str = Path(..., min_length=1, max_length=64, description="Product barcode"),
    client: OpenFoodFactsClient = Depends(get_openfoodfacts_client),
) -> ProductResponse:
    product = await client.resolve(barcode.strip())
    if product is None:
        raise NotFoundError(resource="product", resource_id=barcode)
    return ProductResponse(product=product)


@router.get(
    "/search",
    response_model=ProductSearchResponse,
    responses={400: {"description": "Missing query", "model": ErrorResponse}, **_UPSTREAM_ERRORS},
    summary="Search products by name",
    description=(
        "Free-text search against OpenFoodFacts. Results without a barcode or a "
        "name are dropped, so `count` can be smaller than `page_size`."
    ),
)
async def search_products(
    request: Request,
    background_tasks: BackgroundTasks,
    q: str = Query("", description="Search terms"),
    page: int = Query(1, description="1-based page number"),
    page_size: int = Query(20, description="Results per page (max 100)"),
    user_id: Optional[str] = Query(None, description="Signed-in user; enables the audit record"),
    client: OpenFoodFactsClient = Depends(get_openfoodfacts_client),
) -> ProductSearchResponse:
    result = await client.search(q, page=page, page_size=page_size)

    if user_id:
        background_tasks.add_task(
            transaction_service.log_food_search,
            user_id,
            q.strip(),
            result.count,
            request.client.host if request.client else None,
            request.headers.get("user-agent"),
        )
    return result
