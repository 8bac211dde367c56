"""
Image Loader
============

Decodes an uploaded byte buffer into an RGBA raster held in memory.

Magic-number sniffing is only used after Pillow has already failed, to pick
a more specific diagnostic category for the error response. A matching
signature never rescues a buffer that Pillow could not decode.
"""

import logging
from io import BytesIO
from typing import Optional

from PIL import Image, UnidentifiedImageError

from nutriscan.exceptions import InvalidImageError

logger = logging.getLogger(__name__)

# Decompression-bomb guard: 50 MiB of compressed data can expand enormously
Image.MAX_IMAGE_PIXELS = 80_000_000


def sniff_format(buffer: bytes) -> Optional[str]:
    """
    Identify an image format from the first 12 bytes.

    Returns "jpeg", "png", "gif", "webp" or None.
    """
    head = buffer[:12]
    if len(head) >= 4 and head[:3] == b"\xff\xd8\xff" and head[3] in (0xE0, 0xE1, 0xDB):
        return "jpeg"
    if head[:4] == b"\x89PNG":
        return "png"
    if head[:4] == b"GIF8":
        return "gif"
    if len(head) >= 12 and head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "webp"
    return None


def _failure_category(buffer: bytes, declared_mime_type: str) -> str:
    if sniff_format(buffer) is not None:
        return "corrupt"
    if not (declared_mime_type or "").lower().startswith("image/"):
        return "unsupported_format"
    return "unknown_format"


def load(buffer: bytes, declared_mime_type: str = "") -> Image.Image:
    """
    Decode `buffer` into an RGBA raster.

    Args:
        buffer: Raw upload bytes.
        declared_mime_type: Content type reported by the client (diagnostics only).

    Returns:
        A fully loaded PIL image in mode "RGBA". Animated formats yield
        their first frame.

    Raises:
        InvalidImageError: empty buffer, or Pillow could not produce a raster.
    """
    if not buffer:
        raise InvalidImageError(category="empty", context={"mimetype": declared_mime_type})

    try:
        with Image.open(BytesIO(buffer)) as image:
            image.load()
            raster = image.convert("RGBA")
    except (
        UnidentifiedImageError,
        OSError,
        EOFError,
        ValueError,
        SyntaxError,
        Image.DecompressionBombError,
    ) as e:
        category = _failure_category(buffer, declared_mime_type)
        logger.warning(
            "Image decode failed (%s): mimetype=%s size=%d head=%s error=%s",
            category,
            declared_mime_type,
            len(buffer),
            buffer[:12].hex(),
            e,
        )
        raise InvalidImageError(
            category=category,
            context={
                "mimetype": declared_mime_type,
                "file_size": len(buffer),
                "first_bytes": buffer[:20].hex(),
                "error": str(e),
            },
        ) from e

    logger.debug("Image loaded: %dx%d (%s)", raster.width, raster.height, declared_mime_type)
    return raster
