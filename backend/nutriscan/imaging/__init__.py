# Imaging package init
"""
NutriScan Backend — Barcode Imaging Pipeline
=============================================

What:  The CPU-bound half of a scan: bytes in, barcode text out.
How:   Four synchronous stages, run strictly in order per request:

    loader.load()            bytes → RGBA raster (Pillow)
    normalizer.normalize()   resize ≤ max width, greyscale, contrast, stretch
    luminance.project()      raster → uint8 luma buffer (numpy)
    decoder.SymbolDecoder    luma buffer → symbol (zxing-cpp), two attempts max

No stage holds state between calls; nothing here touches the network, the
database or the disk.
"""

from nutriscan.imaging.decoder import (
    DecodedSymbol,
    DecodeHintSet,
    SymbolDecoder,
    SUPPORTED_FORMATS,
)
from nutriscan.imaging.loader import load
from nutriscan.imaging.luminance import project
from nutriscan.imaging.normalizer import normalize

__all__ = [
    "DecodedSymbol",
    "DecodeHintSet",
    "SymbolDecoder",
    "SUPPORTED_FORMATS",
    "load",
    "normalize",
    "project",
]
