"""
NutriScan Backend — Barcode Service (Pipeline Orchestrator)
============================================================

What:  Runs the scan pipeline: bytes → raster → normalized raster →
       luminance → symbol, then (optionally) symbol → product.
Why:   Keeps pipeline ordering, input guards and degradation rules out of
       the route handlers.
How:   The CPU stages are synchronous and run in Starlette's threadpool so
       the event loop keeps serving other requests. The product lookup is
       the only await point.
Who:   Called by the /api/barcode routes.

Pipeline:
    ┌────────┐   ┌────────────┐   ┌───────────┐   ┌─────────┐   ┌──────────┐
    │ Loader │──▶│ Normalizer │──▶│ Luminance │──▶│ Decoder │──▶│ Resolver │
    └────────┘   └────────────┘   └───────────┘   └─────────┘   └──────────┘
       400            (never          (never          400        never fails
    invalid_image     fails)          fails)     no_barcode_found  the scan

Each stage runs at most once per request, except luminance + decode which
the decoder may run a second time with stronger contrast.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple

from starlette.concurrency import run_in_threadpool

from nutriscan.config import settings
from nutriscan.exceptions import InvalidImageError, ResolverUnavailableError, ValidationError
from nutriscan.imaging import loader, normalizer
from nutriscan.imaging.decoder import DecodedSymbol, DecodeHintSet, SymbolDecoder
from nutriscan.schemas.barcode import LookupStatus
from nutriscan.schemas.product import ProductRecord
from nutriscan.services.openfoodfacts import OpenFoodFactsClient, openfoodfacts_client

logger = logging.getLogger(__name__)

# Takes the lookup coroutine, returns its result
LookupRunner = Callable[[Awaitable[Any]], Awaitable[Any]]


@dataclass
class ScanResult:
    """Canonical pipeline output."""

    barcode: str
    product: Optional[ProductRecord]
    lookup_status: LookupStatus


class BarcodeService:
    """
    Stateless pipeline orchestrator.

    The decoder and OFF client are injectable; the defaults are the
    process-wide instances.
    """

    def __init__(
        self,
        decoder: Optional[SymbolDecoder] = None,
        resolver: Optional[OpenFoodFactsClient] = None,
        max_file_size: Optional[int] = None,
        max_width: Optional[int] = None,
    ):
        self.decoder = decoder or SymbolDecoder()
        self.resolver = resolver or openfoodfacts_client
        self.max_file_size = max_file_size or settings.max_file_size
        self.max_width = max_width or settings.max_image_width

    def hints(self) -> DecodeHintSet:
        return DecodeHintSet(try_harder=settings.decode_try_harder)

    # ── Input Guards ──────────────────────────────────────────────────────

    def check_buffer(self, buffer: bytes, declared_mime_type: str = "") -> None:
        """Reject empty and oversize uploads before any decoding work."""
        if not buffer:
            raise InvalidImageError("empty", context={"mimetype": declared_mime_type})
        if len(buffer) > self.max_file_size:
            raise ValidationError(
                message=(
                    f"Image is too large ({len(buffer) / 1_048_576:.1f} MB). "
                    f"Maximum size is {self.max_file_size // 1_048_576} MB."
                ),
                field="image",
                context={"file_size": len(buffer), "max_file_size": self.max_file_size},
            )

    # ── Synchronous Pipeline ──────────────────────────────────────────────

    def decode_sync(self, buffer: bytes, declared_mime_type: str = "") -> DecodedSymbol:
        """
        Loader → Normalizer → Projector → Decoder, on the calling thread.

        Raises:
            InvalidImageError: bytes are not a decodable image.
            NoBarcodeFoundError: both decode attempts failed.
        """
        self.check_buffer(buffer, declared_mime_type)

        start_time = time.time()
        raster = loader.load(buffer, declared_mime_type)
        original_size = raster.size
        raster = normalizer.normalize(raster, self.max_width)
        symbol = self.decoder.decode_with_retry(raster, self.hints())

        logger.info(
            "Decoded %s barcode %s from %dx%d image (processed at %dx%d) in %.0fms",
            symbol.format,
            symbol.text,
            original_size[0],
            original_size[1],
            raster.width,
            raster.height,
            (time.time() - start_time) * 1000,
        )
        return symbol

    # ── Async Entry Points ────────────────────────────────────────────────

    async def decode(self, buffer: bytes, declared_mime_type: str = "") -> DecodedSymbol:
        """Run the CPU stages in the threadpool."""
        return await run_in_threadpool(self.decode_sync, buffer, declared_mime_type)

    async def lookup(self, barcode: str) -> Tuple[Optional[ProductRecord], LookupStatus]:
        """
        Resolve a decoded barcode, degrading every resolver failure to
        (None, UNAVAILABLE).
        """
        try:
            product = await self.resolver.resolve(barcode)
        except ResolverUnavailableError as e:
            logger.warning(
                "Product lookup for %s unavailable (%s), returning barcode only",
                barcode,
                e.error_code,
            )
            return None, LookupStatus.UNAVAILABLE

        if product is None:
            return None, LookupStatus.NOT_FOUND
        return product, LookupStatus.FOUND

    async def scan(
        self,
        buffer: bytes,
        declared_mime_type: str = "",
        resolve_product: bool = True,
        run_lookup: Optional[LookupRunner] = None,
    ) -> ScanResult:
        """
        Full pipeline. Decoding errors propagate; lookup errors never do.

        Args:
            buffer: Uploaded bytes.
            declared_mime_type: Content type sent by the client (advisory).
            resolve_product: When False the lookup is skipped entirely.
            run_lookup: Awaits the lookup coroutine on the caller's terms;
                the scan route uses it to cancel the lookup when the client
                disconnects. Whatever it raises propagates.
        """
        symbol = await self.decode(buffer, declared_mime_type)
        if not resolve_product:
            return ScanResult(barcode=symbol.text, product=None, lookup_status=LookupStatus.SKIPPED)

        lookup = self.lookup(symbol.text)
        if run_lookup is None:
            product, status = await lookup
        else:
            product, status = await run_lookup(lookup)
        return ScanResult(barcode=symbol.text, product=product, lookup_status=status)


# Singleton instance
barcode_service = BarcodeService()


def get_barcode_service() -> BarcodeService:
    """FastAPI dependency; overridden in tests."""
    return barcode_service
