"""
NutriScan Backend — FastAPI Application Factory
================================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() assembles middleware, exception handlers and routers;
       the lifespan sets up logging and closes pooled clients on shutdown.
Who:   uvicorn (`uvicorn nutriscan.main:app`).

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │                                                          │
    │  Middleware:  Rate Limit → Request ID → Logging → GZip   │
    │                                                          │
    │  Routes:                                                 │
    │    /api/barcode/{scan,read}      BarcodeService          │
    │    /api/openfoodfacts/*          OpenFoodFactsClient     │
    │    /api/transactions[/{id}]      TransactionService      │
    │    /health                                               │
    │                                                          │
    │  Exception Handlers:                                     │
    │    400 validation / invalid image / no barcode           │
    │    404 not found   503 OFF down   504 OFF timeout        │
    │    500 database / unexpected                             │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  logging, configuration check, ready banner
    Shutdown: close the OpenFoodFacts HTTP pool, dispose the database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from nutriscan import __version__
from nutriscan.config import settings
from nutriscan.database import dispose_engine
from nutriscan.exceptions import (
    DatabaseError,
    InvalidImageError,
    NoBarcodeFoundError,
    NotFoundError,
    NutriScanError,
    RateLimitExceededError,
    ResolverTimeoutError,
    ResolverUnavailableError,
    ValidationError,
)
from nutriscan.middleware.logging import RequestLoggingMiddleware
from nutriscan.middleware.rate_limit import RateLimitMiddleware
from nutriscan.middleware.request_id import RequestIDMiddleware, request_id_var
from nutriscan.routes import barcode, health, openfoodfacts, transactions
from nutriscan.services.openfoodfacts import openfoodfacts_client

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure the root logger once, before anything else logs.

    Format: `2024-01-15T12:00:00 [INFO] nutriscan.imaging.decoder: ...`
    Output goes to stdout so Docker collects it.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Chatty at INFO/DEBUG for every call
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("NutriScan Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Keep serving so /health can report the problem
        logger.error("Configuration error: %s", e)
        logger.error("Fix the configuration and restart the server.")

    logger.info(
        "Imaging: max upload %d MB, max width %dpx, try_harder=%s",
        settings.max_file_size // 1_048_576,
        settings.max_image_width,
        settings.decode_try_harder,
    )
    logger.info("OpenFoodFacts: %s (timeout %.0fs)", settings.openfoodfacts_base_url, settings.product_lookup_timeout)
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("API docs: http://%s:%d/docs", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("NutriScan Backend shutting down...")
    await openfoodfacts_client.aclose()
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def error_response(
    exc: NutriScanError,
    status_code: int,
    details: Optional[Dict] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """
    Standard error body: success, error, message, hint, details, request_id.

    `debug` (the exception context: declared MIME, file size, first bytes,
    upstream error text) is only added when settings.debug is on.
    """
    content = {
        "success": False,
        "error": exc.error_code,
        "message": exc.message,
        "hint": exc.hint,
        "request_id": request_id_var.get(""),
    }
    if details:
        content["details"] = details
    if settings.debug and exc.context:
        content["debug"] = exc.context
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map exception types to HTTP responses.

        ValidationError           → 400
        InvalidImageError         → 400
        NoBarcodeFoundError       → 400
        NotFoundError             → 404
        RateLimitExceededError    → 429
        ResolverUnavailableError  → 503
        ResolverTimeoutError      → 504
        DatabaseError             → 500
        NutriScanError (base)     → 500
        Exception (fallback)      → 500

    Stack traces and SQL never reach the client; they are logged.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        details = {"field": exc.field} if exc.field else None
        return error_response(exc, 400, details=details)

    @app.exception_handler(InvalidImageError)
    async def handle_invalid_image(request: Request, exc: InvalidImageError):
        logger.warning(
            "[%s] Invalid image (%s): %s",
            request_id_var.get(""),
            exc.category,
            exc.context,
        )
        return error_response(exc, 400, details={"reason": exc.category})

    @app.exception_handler(NoBarcodeFoundError)
    async def handle_no_barcode(request: Request, exc: NoBarcodeFoundError):
        logger.info("[%s] No barcode found after %d attempts", request_id_var.get(""), exc.attempts)
        return error_response(exc, 400)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return error_response(exc, 404)

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return error_response(
            exc,
            429,
            details={"retry_after": exc.retry_after},
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(ResolverTimeoutError)
    async def handle_resolver_timeout(request: Request, exc: ResolverTimeoutError):
        logger.warning("[%s] OpenFoodFacts timeout: %s", request_id_var.get(""), exc.context)
        return error_response(exc, 504)

    @app.exception_handler(ResolverUnavailableError)
    async def handle_resolver_unavailable(request: Request, exc: ResolverUnavailableError):
        logger.warning("[%s] OpenFoodFacts unavailable: %s", request_id_var.get(""), exc.context)
        headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after else None
        return error_response(exc, 503, headers=headers)

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error(
            "[%s] Database error: %s | Context: %s",
            request_id_var.get(""),
            exc.message,
            exc.context,
        )
        return error_response(exc, 500)

    @app.exception_handler(NutriScanError)
    async def handle_app_error(request: Request, exc: NutriScanError):
        logger.error("[%s] Unhandled application error: %s", request_id_var.get(""), exc.message)
        return error_response(exc, 500)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, exc, exc_info=True)
        content = {
            "success": False,
            "error": "internal_server_error",
            "message": "An unexpected error occurred. Please try again or contact support.",
            "request_id": rid,
        }
        if settings.debug:
            content["debug"] = {"error": str(exc), "error_type": type(exc).__name__}
        return JSONResponse(status_code=500, content=content)


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    """Assemble the application. Middleware runs in reverse order of addition."""
    app = FastAPI(
        title="NutriScan API",
        description=(
            "Barcode scanning and food lookup for the NutriScan app. Upload a photo "
            "of a product barcode to get the decoded number and its OpenFoodFacts "
            "nutrition data."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Total-Count", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RateLimitMiddleware)

    register_exception_handlers(app)

    app.include_router(barcode.router)
    app.include_router(openfoodfacts.router)
    app.include_router(transactions.router)
    app.include_router(health.router)

    return app


app = create_app()
