"""
NutriScan Backend — Custom Exception Hierarchy
===============================================

What:  Application-specific exceptions for each failure scenario.
How:   Each exception carries a user-safe message, a machine-readable
       `error_code`, a remediation `hint`, and an optional context dict.
       Global exception handlers (registered in main.py) turn them into
       structured JSON error responses.
Who:   Raised by the imaging pipeline, services and middleware.

Exception Hierarchy:
    NutriScanError (base)
    ├── ValidationError              → 400 Bad Request
    ├── InvalidImageError            → 400 Bad Request (bytes are not a usable image)
    ├── NoBarcodeFoundError          → 400 Bad Request (image fine, no symbol)
    ├── NotFoundError                → 404 Not Found
    ├── ResolverUnavailableError     → 503 Service Unavailable
    │   └── ResolverTimeoutError     → 504 Gateway Timeout
    ├── DatabaseError                → 500 Internal Server Error
    └── RateLimitExceededError       → 429 Too Many Requests

`context` is logged server-side and only returned to the client as `debug`
when settings.debug is enabled.
"""

from typing import Any, Dict, Optional


class NutriScanError(Exception):
    """
    Base exception for all NutriScan application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged, not returned outside debug mode)
    """

    error_code = "server_error"
    hint: Optional[str] = None

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(NutriScanError):
    """
    Raised when client input fails validation (missing file, oversize upload,
    blank search query).
    """

    error_code = "validation_error"
    hint = "Check the request parameters and try again."

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class InvalidImageError(NutriScanError):
    """
    Raised when an uploaded buffer cannot be decoded into a raster.

    Categories (diagnostic only, never retried by the pipeline):
        empty               zero-length upload
        corrupt             bytes carry a known image signature but fail to decode
        unsupported_format  neither signature nor declared type is an image
        unknown_format      declared as an image, but no known signature
    """

    error_code = "invalid_image"
    hint = "Please upload a valid JPG, PNG, GIF or WebP photo of the barcode."

    MESSAGES = {
        "empty": "The uploaded file is empty.",
        "corrupt": "The image file appears to be corrupted and could not be read.",
        "unsupported_format": "The uploaded file is not a supported image format.",
        "unknown_format": "The image format could not be recognised.",
    }

    def __init__(
        self,
        category: str = "unknown_format",
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["category"] = category
        super().__init__(
            message=self.MESSAGES.get(category, "The uploaded image could not be read."),
            context=ctx,
        )
        self.category = category


class NoBarcodeFoundError(NutriScanError):
    """
    Raised when the image decoded fine but no symbol was located after both
    decode attempts. Terminal for the request; the client may resubmit.
    """

    error_code = "no_barcode_found"
    hint = (
        "Make sure the barcode is sharp, fills most of the frame and is evenly lit, "
        "then take another photo."
    )

    def __init__(
        self,
        attempts: int = 2,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["attempts"] = attempts
        super().__init__(
            message="No barcode could be read from the image.",
            context=ctx,
        )
        self.attempts = attempts


class NotFoundError(NutriScanError):
    """Raised when a requested resource does not exist."""

    error_code = "not_found"

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class ResolverUnavailableError(NutriScanError):
    """
    Raised when the OpenFoodFacts API cannot be reached, answers with a
    server error, or the circuit breaker is open.

    Inside the scan pipeline this never fails the request; it degrades to
    `product: null` with `product_lookup: "unavailable"`.
    """

    error_code = "product_lookup_unavailable"
    hint = "The product database is not reachable right now. Please try again later."

    def __init__(
        self,
        message: str = "The product database is temporarily unavailable",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class ResolverTimeoutError(ResolverUnavailableError):
    """Raised when the OpenFoodFacts API did not answer within the timeout."""

    error_code = "product_lookup_timeout"
    hint = "The product database took too long to answer. Please try again later."

    def __init__(
        self,
        message: str = "The product database did not respond in time",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(NutriScanError):
    """
    Raised when database operations fail unexpectedly.

    The client always receives a generic message; details are logged only.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitExceededError(NutriScanError):
    """Raised when a client exceeds the per-IP request rate limit."""

    error_code = "rate_limit_exceeded"
    hint = "Wait for the number of seconds in the Retry-After header, then try again."

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after
