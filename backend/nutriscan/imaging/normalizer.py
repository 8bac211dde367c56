"""
Image Normalizer
================

What:  Prepares a decoded raster for barcode binarization.
How:   1. Downsample rasters wider than `max_width` (aspect ratio preserved)
       2. Greyscale
       3. Contrast boost (0.3 on a [-1, 1] scale)
       4. Histogram normalization (stretch each channel to 0..255)

The pixel operations work on numpy copies of the RGBA data and return new
PIL images; the input raster is never modified. Contrast and brightness use
the [-1, 1] adjustment scale common to web image libraries, so the same
amounts used by mobile clients (0.3, 0.5, +0.1) mean the same thing here.

Resize Policy:
    Resizing is best-effort. If Pillow cannot produce the target size (e.g.
    a 5000x1 strip rounds to height 0), the original raster is kept and the
    pipeline continues. The greyscale/contrast/normalize steps are total.
"""

import logging
import math

import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)

DEFAULT_MAX_WIDTH = 1200
BASE_CONTRAST = 0.3

# ITU-R BT.709 weights used for the greyscale pass
_GREY_WEIGHTS = (0.2126, 0.7152, 0.0722)


def _pixels(raster: Image.Image) -> np.ndarray:
    """Writable (H, W, 4) uint8 copy of an RGBA raster."""
    if raster.mode != "RGBA":
        raster = raster.convert("RGBA")
    return np.array(raster, dtype=np.uint8)


def _to_image(pixels: np.ndarray) -> Image.Image:
    return Image.fromarray(pixels)


def target_size(width: int, height: int, max_width: int = DEFAULT_MAX_WIDTH) -> tuple:
    """
    Size a raster of `width` x `height` is resized to.

    Rasters at or below `max_width` keep their size. Height is rounded
    half-up so 1600x401 → 1200x301.
    """
    if width <= max_width:
        return width, height
    return max_width, int(math.floor(height * max_width / width + 0.5))


def downsample(raster: Image.Image, max_width: int = DEFAULT_MAX_WIDTH) -> Image.Image:
    """Resize `raster` to at most `max_width` wide, keeping it on failure."""
    new_width, new_height = target_size(raster.width, raster.height, max_width)
    if (new_width, new_height) == raster.size:
        return raster

    try:
        if new_height < 1:
            raise ValueError(f"degenerate target size {new_width}x{new_height}")
        resized = raster.resize((new_width, new_height), Image.Resampling.BILINEAR)
    except (ValueError, OSError, MemoryError) as e:
        logger.warning(
            "Resize %dx%d → %dx%d failed, continuing with original raster: %s",
            raster.width,
            raster.height,
            new_width,
            new_height,
            e,
        )
        return raster

    logger.debug("Resized raster %dx%d → %dx%d", raster.width, raster.height, new_width, new_height)
    return resized


def greyscale(raster: Image.Image) -> Image.Image:
    """Replace R, G and B with their BT.709 grey value (truncated). Alpha is kept."""
    pixels = _pixels(raster)
    rgb = pixels[..., :3].astype(np.float64)
    wr, wg, wb = _GREY_WEIGHTS
    grey = (wr * rgb[..., 0] + wg * rgb[..., 1] + wb * rgb[..., 2]).astype(np.uint8)
    pixels[..., 0] = grey
    pixels[..., 1] = grey
    pixels[..., 2] = grey
    return _to_image(pixels)


def contrast(raster: Image.Image, amount: float) -> Image.Image:
    """
    Adjust contrast by `amount` in [-1, 1).

    factor = (amount + 1) / (1 - amount)
    v' = clamp(floor(factor * (v - 127) + 127), 0, 255)
    """
    if not -1.0 <= amount < 1.0:
        raise ValueError(f"contrast amount must be in [-1, 1), got {amount}")
    factor = (amount + 1.0) / (1.0 - amount)
    pixels = _pixels(raster)
    rgb = pixels[..., :3].astype(np.float64)
    adjusted = np.floor(factor * (rgb - 127.0) + 127.0)
    pixels[..., :3] = np.clip(adjusted, 0, 255).astype(np.uint8)
    return _to_image(pixels)


def brightness(raster: Image.Image, amount: float) -> Image.Image:
    """
    Adjust brightness by `amount` in [-1, 1].

    Negative amounts scale towards black, positive amounts move each channel
    towards white by that fraction of the remaining headroom.
    """
    if not -1.0 <= amount <= 1.0:
        raise ValueError(f"brightness amount must be in [-1, 1], got {amount}")
    pixels = _pixels(raster)
    rgb = pixels[..., :3].astype(np.float64)
    if amount < 0:
        rgb = rgb * (1.0 + amount)
    else:
        rgb = rgb + (255.0 - rgb) * amount
    pixels[..., :3] = np.clip(rgb, 0, 255).astype(np.uint8)
    return _to_image(pixels)


def stretch_histogram(raster: Image.Image) -> Image.Image:
    """
    Linearly stretch each colour channel from its [min, max] to [0, 255].

    Flat channels (min == max) are left unchanged.
    """
    pixels = _pixels(raster)
    for channel in range(3):
        values = pixels[..., channel]
        low = int(values.min())
        high = int(values.max())
        if high == low:
            continue
        scaled = (values.astype(np.float64) - low) * 255.0 / (high - low)
        pixels[..., channel] = np.clip(scaled, 0, 255).astype(np.uint8)
    return _to_image(pixels)


def adjust(raster: Image.Image, contrast_amount: float, brightness_amount: float = 0.0) -> Image.Image:
    """Contrast then brightness; used by the decoder's second attempt."""
    adjusted = contrast(raster, contrast_amount)
    if brightness_amount:
        adjusted = brightness(adjusted, brightness_amount)
    return adjusted


def normalize(raster: Image.Image, max_width: int = DEFAULT_MAX_WIDTH) -> Image.Image:
    """
    Full normalization pass: downsample, greyscale, contrast 0.3, stretch.

    Never raises for a valid raster.
    """
    raster = downsample(raster, max_width)
    raster = greyscale(raster)
    raster = contrast(raster, BASE_CONTRAST)
    return stretch_histogram(raster)
