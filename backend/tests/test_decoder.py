"""
NutriScan Backend — Symbol Decoder Tests
=========================================

What we test:
    ✅ Bounded retry: 1 reader call on first success, 2 on fail-then-success,
       2 on terminal failure
    ✅ Second attempt sees a different (adjusted) luminance buffer
    ✅ Hint set validation
    ✅ zxing-cpp reader decodes a clean synthetic EAN-13
"""

from unittest.mock import MagicMock

import numpy as np
import pytest
from PIL import Image

from nutriscan.exceptions import NoBarcodeFoundError
from nutriscan.imaging import loader, normalizer
from nutriscan.imaging.decoder import (
    DecodedSymbol,
    DecodeHintSet,
    SUPPORTED_FORMATS,
    SymbolDecoder,
    zxing_reader,
)
from nutriscan.imaging.luminance import project
from conftest import render_ean13

SYMBOL = DecodedSymbol(text="5449000000996", format="EAN-13")


def _grey_raster(width=60, height=20, value=110):
    return normalizer.normalize(Image.new("RGBA", (width, height), (value, value, value, 255)))


class TestDecodeHintSet:

    def test_defaults(self):
        hints = DecodeHintSet()
        assert hints.formats == SUPPORTED_FORMATS
        assert hints.formats[0] == "EAN-13"
        assert hints.try_harder is True

    def test_rejects_empty_formats(self):
        with pytest.raises(ValueError):
            DecodeHintSet(formats=())

    def test_rejects_unknown_format(self):
        with pytest.raises(ValueError):
            DecodeHintSet(formats=("EAN-13", "QR-CODE"))

    def test_immutable(self):
        hints = DecodeHintSet()
        with pytest.raises(AttributeError):
            hints.try_harder = False


class TestSingleDecode:

    def test_shape_mismatch(self):
        decoder = SymbolDecoder(reader=MagicMock(return_value=SYMBOL))
        with pytest.raises(ValueError):
            decoder.decode(np.zeros((10, 20), dtype=np.uint8), width=10, height=20, hints=DecodeHintSet())

    def test_reader_miss_raises(self):
        decoder = SymbolDecoder(reader=MagicMock(return_value=None))
        with pytest.raises(NoBarcodeFoundError):
            decoder.decode(np.zeros((20, 10), dtype=np.uint8), width=10, height=20, hints=DecodeHintSet())


class TestDecodeWithRetry:
    """The attempt plan is walked at most twice."""

    def test_first_attempt_success_calls_reader_once(self):
        reader = MagicMock(return_value=SYMBOL)
        symbol = SymbolDecoder(reader=reader).decode_with_retry(_grey_raster(), DecodeHintSet())
        assert symbol == SYMBOL
        assert reader.call_count == 1

    def test_fail_then_success_calls_reader_twice(self):
        reader = MagicMock(side_effect=[None, SYMBOL])
        symbol = SymbolDecoder(reader=reader).decode_with_retry(_grey_raster(), DecodeHintSet())
        assert symbol == SYMBOL
        assert reader.call_count == 2

    def test_terminal_failure_calls_reader_twice(self):
        reader = MagicMock(return_value=None)
        with pytest.raises(NoBarcodeFoundError) as exc_info:
            SymbolDecoder(reader=reader).decode_with_retry(_grey_raster(), DecodeHintSet())
        assert reader.call_count == 2
        assert exc_info.value.attempts == 2

    def test_second_attempt_uses_adjusted_buffer(self):
        seen = []

        def reader(luminance, hints):
            seen.append(np.array(luminance))
            return None

        raster = Image.new("RGBA", (40, 10), (90, 90, 90, 255))
        with pytest.raises(NoBarcodeFoundError):
            SymbolDecoder(reader=reader).decode_with_retry(raster, DecodeHintSet())

        first, second = seen
        assert int(first[0, 0]) == 90
        # contrast 0.5: floor(3 * (90 - 127) + 127) = 16; brightness 0.1: 16 + 239 * 0.1 = 39.9 → 39
        assert int(second[0, 0]) == 39

    def test_same_hints_on_every_attempt(self):
        reader = MagicMock(return_value=None)
        hints = DecodeHintSet(formats=("EAN-13",), try_harder=False)
        with pytest.raises(NoBarcodeFoundError):
            SymbolDecoder(reader=reader).decode_with_retry(_grey_raster(), hints)
        assert all(call.args[1] is hints for call in reader.call_args_list)


class TestZxingReader:

    def test_decodes_clean_ean13(self):
        raster = loader.load(render_ean13("5449000000996", width=800, height=200, module_px=6), "image/png")
        symbol = zxing_reader(project(raster), DecodeHintSet())
        assert symbol is not None
        assert symbol.text == "5449000000996"
        assert symbol.format == "EAN-13"

    def test_blank_image_returns_none(self):
        raster = Image.new("RGBA", (300, 100), (255, 255, 255, 255))
        assert zxing_reader(project(raster), DecodeHintSet()) is None

    def test_format_restriction(self):
        """An EAN-13 is not reported when only CODE-128 is accepted."""
        raster = loader.load(render_ean13("5449000000996", width=800, height=200, module_px=6), "image/png")
        assert zxing_reader(project(raster), DecodeHintSet(formats=("CODE-128",))) is None
