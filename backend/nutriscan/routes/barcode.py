"""
NutriScan Backend — Barcode Route Handlers
===========================================

What:  POST /api/barcode/scan (decode + product lookup) and
       POST /api/barcode/read (decode only).
How:   Reads the multipart `image` field into memory, hands it to
       BarcodeService, and records a scan in the audit log after the
       response when a `user_id` was sent.
Who:   Called by the mobile app's camera screen.

Request Flow (scan):
    1. Read `image` (max 50 MB, any declared content type)
    2. Decode in the threadpool → 400 on invalid image / no barcode
    3. Look the barcode up in OpenFoodFacts, cancelled if the client
       disconnects first
    4. Respond 200 with barcode + product (or null + lookup status)
    5. Background task: audit record (only with user_id)
"""

import asyncio
import functools
import logging
from typing import Any, Awaitable, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Request, Response, UploadFile

from nutriscan.exceptions import ValidationError
from nutriscan.schemas.barcode import LookupStatus, ReadResponse, ScanResponse
from nutriscan.schemas.common import ErrorResponse
from nutriscan.services.barcode_service import BarcodeService, get_barcode_service
from nutriscan.services.transaction_service import transaction_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/barcode", tags=["Barcode"])

# Seconds between client-disconnect checks while a lookup is in flight
DISCONNECT_POLL_INTERVAL = 0.25

# nginx's "client closed request"; the client never sees it
CLIENT_CLOSED_REQUEST = 499

LOOKUP_MESSAGES = {
    LookupStatus.NOT_FOUND: "Barcode read, but no matching product was found in OpenFoodFacts.",
    LookupStatus.UNAVAILABLE: "Barcode read, but product details are temporarily unavailable.",
}

_ERROR_RESPONSES = {
    400: {"description": "Invalid image or no barcode found", "model": ErrorResponse},
    429: {"description": "Rate limit exceeded", "model": ErrorResponse},
}


async def read_upload(image: Optional[UploadFile], max_size: int) -> bytes:
    """
    Read the uploaded file fully and close it.

    The size the multipart parser reports is checked first so an oversize
    upload is rejected without being read into memory.
    """
    if image is None:
        raise ValidationError(message="No image file was uploaded", field="image")
    if image.size is not None and image.size > max_size:
        await image.close()
        raise ValidationError(
            message=(
                f"Image is too large ({image.size / 1_048_576:.1f} MB). "
                f"Maximum size is {max_size // 1_048_576} MB."
            ),
            field="image",
            context={"reported_size": image.size, "max_file_size": max_size},
        )
    try:
        return await image.read()
    finally:
        await image.close()


class ClientDisconnected(Exception):
    """The client closed the connection before the response was ready."""


async def run_unless_disconnected(request: Request, awaitable: Awaitable[Any]) -> Any:
    """
    Await `awaitable` as a task, cancelling it if the client goes away.

    Returns the task's result, or raises ClientDisconnected when the client
    went away first.
    """
    task = asyncio.ensure_future(awaitable)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_INTERVAL)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.info("Client disconnected, cancelling %s %s", request.method, request.url.path)
                task.cancel()
                raise ClientDisconnected()
    finally:
        if not task.done():
            task.cancel()


def _client_info(request: Request):
    ip_address = request.client.host if request.client else None
    return ip_address, request.headers.get("user-agent")


@router.post(
    "/scan",
    response_model=ScanResponse,
    responses={200: {"model": ScanResponse}, **_ERROR_RESPONSES},
    summary="Read a barcode from a photo and look up the product",
    description=(
        "Upload a photo (JPG, PNG, GIF or WebP, max 50 MB) in the `image` field. "
        "A product database outage never fails the scan: the barcode is returned "
        "with `product: null` and `product_lookup: \"unavailable\"`."
    ),
)
async def scan_barcode(
    request: Request,
    background_tasks: BackgroundTasks,
    image: Optional[UploadFile] = File(None, description="Photo containing a barcode"),
    user_id: Optional[str] = Form(None, description="Signed-in user; enables the audit record"),
    service: BarcodeService = Depends(get_barcode_service),
):
    content = await read_upload(image, service.max_file_size)
    declared_type = image.content_type or ""
    logger.info(
        "Received scan request: filename=%s, type=%s, size=%d bytes",
        image.filename or "unknown",
        declared_type,
        len(content),
    )

    try:
        result = await service.scan(
            content,
            declared_type,
            run_lookup=functools.partial(run_unless_disconnected, request),
        )
    except ClientDisconnected:
        return Response(status_code=CLIENT_CLOSED_REQUEST)

    if user_id:
        ip_address, user_agent = _client_info(request)
        background_tasks.add_task(
            transaction_service.log_barcode_scan,
            user_id,
            result.barcode,
            result.product,
            ip_address,
            user_agent,
        )

    return ScanResponse(
        barcode=result.barcode,
        product=result.product,
        product_lookup=result.lookup_status,
        message=LOOKUP_MESSAGES.get(result.lookup_status),
    )


@router.post(
    "/read",
    response_model=ReadResponse,
    responses={200: {"model": ReadResponse}, **_ERROR_RESPONSES},
    summary="Read a barcode from a photo",
    description="Decode only; no product lookup and no audit record.",
)
async def read_barcode(
    image: Optional[UploadFile] = File(None, description="Photo containing a barcode"),
    service: BarcodeService = Depends(get_barcode_service),
) -> ReadResponse:
    content = await read_upload(image, service.max_file_size)
    result = await service.scan(content, image.content_type or "", resolve_product=False)
    return ReadResponse(barcode=result.barcode)
