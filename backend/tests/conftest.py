"""
NutriScan Backend — Test Configuration (conftest.py)
=====================================================

Shared fixtures for the whole suite. Nothing here touches a real database
or the real OpenFoodFacts API: sessions are mocks and OFF is served by
httpx.MockTransport.

Function-scoped fixtures:
    ├── mock_db_session:   AsyncMock standing in for AsyncSession
    ├── ean13_png:         1600x400 PNG of barcode 5449000000996
    ├── blank_png:         white PNG with no barcode
    ├── off_product_json:  raw OFF product payload
    ├── make_off_client:   OpenFoodFactsClient factory over a mock transport
    └── test_client:       httpx AsyncClient bound to the FastAPI app
"""

import os

# Must be set before nutriscan.config is imported
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ["RETRY_MIN_WAIT"] = "0"
os.environ["RETRY_MAX_WAIT"] = "0"
os.environ["RETRY_JITTER"] = "0"
os.environ["RATE_LIMIT_REQUESTS"] = "10000"
os.environ["DEBUG"] = "false"

from io import BytesIO
from typing import Callable, Optional
from unittest.mock import AsyncMock, MagicMock

import httpx
import numpy as np
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from PIL import Image

from nutriscan.services.openfoodfacts import CircuitBreaker, OpenFoodFactsClient

OFF_BASE_URL = "https://off.test"


# ══════════════════════════════════════════════════════════════════════════
# Synthetic Barcodes
# ══════════════════════════════════════════════════════════════════════════

_EAN_L = {
    "0": "0001101", "1": "0011001", "2": "0010011", "3": "0111101", "4": "0100011",
    "5": "0110001", "6": "0101111", "7": "0111011", "8": "0110111", "9": "0001011",
}
_EAN_R = {d: "".join("1" if bit == "0" else "0" for bit in code) for d, code in _EAN_L.items()}
_EAN_G = {d: code[::-1] for d, code in _EAN_R.items()}
_EAN_PARITY = {
    "0": "LLLLLL", "1": "LLGLGG", "2": "LLGGLG", "3": "LLGGGL", "4": "LGLLGG",
    "5": "LGGLLG", "6": "LGGGLL", "7": "LGLGLG", "8": "LGLGGL", "9": "LGGLGL",
}


def ean13_modules(digits: str) -> str:
    """95-module bit string for a 13-digit EAN code (1 = bar)."""
    assert len(digits) == 13 and digits.isdigit()
    parity = _EAN_PARITY[digits[0]]
    left = "".join(
        (_EAN_L if p == "L" else _EAN_G)[d] for p, d in zip(parity, digits[1:7])
    )
    right = "".join(_EAN_R[d] for d in digits[7:])
    return "101" + left + "01010" + right + "101"


def render_ean13(
    digits: str,
    width: int = 1600,
    height: int = 400,
    module_px: int = 12,
    fmt: str = "PNG",
) -> bytes:
    """Black-on-white EAN-13 centered in a width x height image, encoded as `fmt`."""
    modules = ean13_modules(digits)
    symbol_width = len(modules) * module_px
    left = (width - symbol_width) // 2
    top, bottom = height // 10, height - height // 10

    pixels = np.full((height, width), 255, dtype=np.uint8)
    for i, bit in enumerate(modules):
        if bit == "1":
            x = left + i * module_px
            pixels[top:bottom, x:x + module_px] = 0

    out = BytesIO()
    Image.fromarray(pixels).convert("RGB").save(out, format=fmt)
    return out.getvalue()


def png_bytes(width: int, height: int, color=(255, 255, 255)) -> bytes:
    out = BytesIO()
    Image.new("RGB", (width, height), color).save(out, format="PNG")
    return out.getvalue()


# ══════════════════════════════════════════════════════════════════════════
# Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def mock_db_session():
    """
    AsyncMock standing in for an AsyncSession.

    Usage:
        mock_db_session.execute.return_value = result_mock
    """
    session = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def ean13_png():
    return render_ean13("5449000000996")


@pytest.fixture
def blank_png():
    return png_bytes(800, 200)


@pytest.fixture
def off_product_json():
    """Trimmed OFF /api/v0/product response for Coca-Cola 330ml."""
    return {
        "status": 1,
        "code": "5449000000996",
        "product": {
            "code": "5449000000996",
            "product_name": "Coca-Cola",
            "product_name_en": "Coca-Cola",
            "brands": "Coca-Cola",
            "brands_tags": ["coca-cola"],
            "categories": "Beverages, Sodas",
            "categories_tags": ["en:beverages", "en:sodas"],
            "image_front_url": "https://images.openfoodfacts.org/front.jpg",
            "nutriscore_grade": "e",
            "nutriscore_score": 14,
            "ingredients_text": "Carbonated water, sugar, colour (caramel E150d)",
            "allergens": "",
            "allergens_tags": [],
            "nutriments": {
                "energy": 180,
                "energy_unit": "kJ",
                "energy-kcal": 42,
                "sugars": 10.6,
                "sugars_unit": "g",
                "salt": 0,
            },
            "serving_size": "330 ml",
            "quantity": "330 ml",
            "last_modified_t": 1700000000,
        },
    }


@pytest.fixture
def make_off_client() -> Callable[..., OpenFoodFactsClient]:
    """
    Build an OpenFoodFactsClient whose HTTP calls go to `handler`.

    Usage:
        client = make_off_client(lambda request: httpx.Response(200, json={...}))
    """

    def factory(
        handler: Callable[[httpx.Request], httpx.Response],
        circuit_breaker: Optional[CircuitBreaker] = None,
    ) -> OpenFoodFactsClient:
        http = httpx.AsyncClient(
            base_url=OFF_BASE_URL,
            transport=httpx.MockTransport(handler),
        )
        return OpenFoodFactsClient(
            http_client=http,
            circuit_breaker=circuit_breaker or CircuitBreaker(failure_threshold=3, recovery_timeout=60),
        )

    return factory


@pytest_asyncio.fixture
async def test_client():
    """
    httpx AsyncClient talking to the app in-process.

    Dependency overrides set by a test are cleared afterwards.
    """
    from nutriscan.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
