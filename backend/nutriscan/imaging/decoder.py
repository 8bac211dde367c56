"""
Symbol Decoder
==============

What:  Finds a single 1-D barcode in a luminance buffer.
How:   zxing-cpp's multi-format reader with local-average (hybrid) binarization,
       restricted to retail/logistics 1-D formats.
Who:   Called by BarcodeService after normalization.

Attempt Plan:
    The decoder walks a fixed plan of at most two attempts:

        attempt 1: luminance of the normalized raster
        attempt 2: contrast 0.5, brightness +0.1 on the normalized raster,
                   luminance re-projected

    The first attempt that yields a symbol ends the plan. When both fail,
    NoBarcodeFoundError is raised. Hints never change between attempts and
    the image is never rotated or cropped by this module; the reader's own
    `try_harder` scanning is the only extra effort.

    The plan is data (ATTEMPT_PLAN), so the bound is visible in one place and
    tests can count reader invocations through an injected reader.
"""

import functools
import logging
import operator
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import numpy as np
import zxingcpp
from PIL import Image

from nutriscan.exceptions import NoBarcodeFoundError
from nutriscan.imaging import luminance as luminance_projector
from nutriscan.imaging import normalizer

logger = logging.getLogger(__name__)


# ── Format Hints ──────────────────────────────────────────────────────────
# Canonical names → zxing-cpp formats, in priority order
_ZXING_FORMATS = {
    "EAN-13": zxingcpp.BarcodeFormat.EAN13,
    "EAN-8": zxingcpp.BarcodeFormat.EAN8,
    "UPC-A": zxingcpp.BarcodeFormat.UPCA,
    "UPC-E": zxingcpp.BarcodeFormat.UPCE,
    "CODE-128": zxingcpp.BarcodeFormat.Code128,
    "CODE-39": zxingcpp.BarcodeFormat.Code39,
    "ITF": zxingcpp.BarcodeFormat.ITF,
}
_FORMAT_NAMES = {fmt.name: name for name, fmt in _ZXING_FORMATS.items()}

SUPPORTED_FORMATS: Tuple[str, ...] = tuple(_ZXING_FORMATS)


@dataclass(frozen=True)
class DecodeHintSet:
    """Accepted symbol formats plus the exhaustive-scan flag. Immutable."""

    formats: Tuple[str, ...] = SUPPORTED_FORMATS
    try_harder: bool = True

    def __post_init__(self) -> None:
        if not self.formats:
            raise ValueError("DecodeHintSet needs at least one format")
        unknown = [f for f in self.formats if f not in _ZXING_FORMATS]
        if unknown:
            raise ValueError(f"Unsupported barcode formats: {unknown}")


@dataclass(frozen=True)
class DecodedSymbol:
    text: str
    format: str


# A reader takes a (height, width) uint8 luminance buffer and returns the
# first symbol found, or None.
Reader = Callable[[np.ndarray, DecodeHintSet], Optional[DecodedSymbol]]


def zxing_reader(luminance: np.ndarray, hints: DecodeHintSet) -> Optional[DecodedSymbol]:
    """Run zxing-cpp over a luminance buffer with local-average binarization."""
    formats = functools.reduce(operator.or_, (_ZXING_FORMATS[f] for f in hints.formats))
    result = zxingcpp.read_barcode(
        np.ascontiguousarray(luminance, dtype=np.uint8).copy(),
        formats=formats,
        try_rotate=hints.try_harder,
        try_downscale=hints.try_harder,
        binarizer=zxingcpp.Binarizer.LocalAverage,
    )
    if result is None or not result.text:
        return None
    fmt = result.format
    return DecodedSymbol(text=result.text, format=_FORMAT_NAMES.get(fmt.name, fmt.name))


class SymbolDecoder:
    """
    Two-attempt barcode decoder.

    Each entry in ATTEMPT_PLAN is either None (decode the raster as given)
    or a (contrast, brightness) adjustment applied to the normalized raster
    before re-projecting luminance.
    """

    ATTEMPT_PLAN: Tuple[Optional[Tuple[float, float]], ...] = (
        None,
        (0.5, 0.1),
    )

    def __init__(self, reader: Optional[Reader] = None):
        self.reader = reader or zxing_reader

    def decode(
        self,
        luminance: np.ndarray,
        width: int,
        height: int,
        hints: DecodeHintSet,
    ) -> DecodedSymbol:
        """
        Single decode attempt over a prepared luminance buffer.

        Raises:
            ValueError: buffer shape does not match width x height.
            NoBarcodeFoundError: the reader found nothing.
        """
        if luminance.shape != (height, width):
            raise ValueError(
                f"Luminance buffer shape {luminance.shape} does not match {width}x{height}"
            )
        symbol = self.reader(luminance, hints)
        if symbol is None:
            raise NoBarcodeFoundError(attempts=1)
        return symbol

    def decode_with_retry(self, raster: Image.Image, hints: DecodeHintSet) -> DecodedSymbol:
        """
        Walk the attempt plan over an already-normalized raster.

        Returns the first decoded symbol; raises NoBarcodeFoundError once the
        plan is exhausted.
        """
        width, height = raster.size
        for attempt, adjustment in enumerate(self.ATTEMPT_PLAN, start=1):
            source = raster
            if adjustment is not None:
                contrast_amount, brightness_amount = adjustment
                source = normalizer.adjust(raster, contrast_amount, brightness_amount)

            buffer = luminance_projector.project(source)
            try:
                symbol = self.decode(buffer, width, height, hints)
            except NoBarcodeFoundError:
                logger.debug("Decode attempt %d/%d found nothing", attempt, len(self.ATTEMPT_PLAN))
                continue

            logger.info(
                "Decoded %s symbol on attempt %d/%d",
                symbol.format,
                attempt,
                len(self.ATTEMPT_PLAN),
            )
            return symbol

        raise NoBarcodeFoundError(
            attempts=len(self.ATTEMPT_PLAN),
            context={"width": width, "height": height},
        )
