"""Luminance projection: RGBA raster → single-channel 8-bit buffer for the decoder."""

import numpy as np
from PIL import Image

# ITU-R BT.601 luma weights
LUMA_WEIGHTS = (0.299, 0.587, 0.114)


def project(raster: Image.Image) -> np.ndarray:
    """
    Compute round(0.299R + 0.587G + 0.114B) for every pixel, alpha discarded.

    Returns a read-only uint8 array of shape (height, width), row-major in the
    raster's scan order. Rounding is half-up.
    """
    if raster.mode != "RGBA":
        raster = raster.convert("RGBA")
    rgb = np.asarray(raster, dtype=np.float64)[..., :3]
    wr, wg, wb = LUMA_WEIGHTS
    luma = np.floor(wr * rgb[..., 0] + wg * rgb[..., 1] + wb * rgb[..., 2] + 0.5)
    buffer = np.clip(luma, 0, 255).astype(np.uint8)
    buffer.setflags(write=False)
    return buffer
