"""
NutriScan Backend — API Route Tests
====================================

What:  HTTP-level tests for every route through the real FastAPI app.
How:   Services are swapped with app.dependency_overrides; the database and
       OFF are never contacted.

What we test:
    ✅ Scan: found / not_found / unavailable, audit task only with user_id
    ✅ Error responses: status code, error code, hint, request id
    ✅ Product lookup 404 / 503 / 504, search validation
    ✅ Transactions list headers, user_id required, health states
    ✅ Oversize uploads rejected from the reported size before reading
    ✅ Lookup cancelled when the client disconnects
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import httpx
import pytest

from conftest import png_bytes
from nutriscan.database import get_db_session
from nutriscan.exceptions import (
    NoBarcodeFoundError,
    ResolverTimeoutError,
    ResolverUnavailableError,
    ValidationError,
)
from nutriscan.imaging.decoder import DecodedSymbol
from nutriscan.main import app
from nutriscan.models.transaction import Transaction
from nutriscan.routes.barcode import ClientDisconnected, read_upload, run_unless_disconnected
from nutriscan.schemas.product import ProductRecord, ProductSearchResponse
from nutriscan.services.barcode_service import BarcodeService, get_barcode_service
from nutriscan.services.openfoodfacts import get_openfoodfacts_client

PRODUCT = ProductRecord(id="5449000000996", name="Coca-Cola", brand="Coca-Cola")

# Any decodable image; the symbol itself comes from the mocked decoder
IMAGE = png_bytes(64, 32)


def _barcode_service(decode=None, product=PRODUCT, resolve_error=None):
    """Real BarcodeService.scan with the decoder and resolver mocked out."""
    decoder = MagicMock()
    decoder.decode_with_retry = MagicMock(
        return_value=DecodedSymbol(text="5449000000996", format="EAN-13"),
        side_effect=decode,
    )
    resolver = MagicMock()
    resolver.resolve = AsyncMock(
        return_value=product,
        side_effect=resolve_error,
    )
    service = BarcodeService(decoder=decoder, resolver=resolver)
    app.dependency_overrides[get_barcode_service] = lambda: service
    return service


def _off_client(**methods):
    client = MagicMock()
    client.status.return_value = "closed"
    for name, mock in methods.items():
        setattr(client, name, mock)
    app.dependency_overrides[get_openfoodfacts_client] = lambda: client
    return client


def _upload(content=IMAGE, content_type="image/png"):
    return {"image": ("barcode.png", content, content_type)}


class TestScanRoute:

    @pytest.mark.asyncio
    async def test_found(self, test_client):
        service = _barcode_service()

        response = await test_client.post("/api/barcode/scan", files=_upload())

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["barcode"] == "5449000000996"
        assert body["product"]["name"] == "Coca-Cola"
        assert body["product_lookup"] == "found"
        assert body["message"] is None
        service.resolver.resolve.assert_awaited_once_with("5449000000996")

    @pytest.mark.asyncio
    async def test_not_found_still_returns_barcode(self, test_client):
        _barcode_service(product=None)

        response = await test_client.post("/api/barcode/scan", files=_upload())

        assert response.status_code == 200
        body = response.json()
        assert body["barcode"] == "5449000000996"
        assert body["product"] is None
        assert body["product_lookup"] == "not_found"
        assert body["message"]

    @pytest.mark.asyncio
    async def test_unavailable_still_returns_barcode(self, test_client):
        _barcode_service(resolve_error=ResolverUnavailableError(retry_after=30))

        response = await test_client.post("/api/barcode/scan", files=_upload())

        assert response.status_code == 200
        body = response.json()
        assert body["barcode"] == "5449000000996"
        assert body["product"] is None
        assert body["product_lookup"] == "unavailable"
        assert body["message"]

    @pytest.mark.asyncio
    async def test_odd_off_timestamps_do_not_fail_scan(self, test_client, make_off_client):
        payload = {
            "status": 1,
            "product": {
                "code": "5449000000996",
                "product_name": "Coke",
                "last_modified_t": "2023-11-14",
                "created_t": 1.5,
            },
        }
        client = make_off_client(lambda request: httpx.Response(200, json=payload))
        decoder = MagicMock()
        decoder.decode_with_retry.return_value = DecodedSymbol(text="5449000000996", format="EAN-13")
        service = BarcodeService(decoder=decoder, resolver=client)
        app.dependency_overrides[get_barcode_service] = lambda: service

        response = await test_client.post("/api/barcode/scan", files=_upload())

        assert response.status_code == 200
        body = response.json()
        assert body["product_lookup"] == "found"
        assert body["product"]["name"] == "Coke"
        assert body["product"]["last_modified"] is None
        assert body["product"]["created"] == 1

    @pytest.mark.asyncio
    async def test_audit_record_only_with_user_id(self, test_client):
        _barcode_service()
        with patch("nutriscan.routes.barcode.transaction_service") as mock_audit:
            mock_audit.log_barcode_scan = AsyncMock()

            await test_client.post("/api/barcode/scan", files=_upload())
            mock_audit.log_barcode_scan.assert_not_awaited()

            await test_client.post("/api/barcode/scan", files=_upload(), data={"user_id": "user-1"})
            mock_audit.log_barcode_scan.assert_awaited_once()
            args = mock_audit.log_barcode_scan.await_args.args
            assert args[0] == "user-1"
            assert args[1] == "5449000000996"
            assert args[2] == PRODUCT

    @pytest.mark.asyncio
    async def test_missing_image(self, test_client):
        service = _barcode_service()

        response = await test_client.post("/api/barcode/scan", data={"user_id": "user-1"})

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "validation_error"
        assert body["details"] == {"field": "image"}
        service.decoder.decode_with_retry.assert_not_called()

    @pytest.mark.asyncio
    async def test_oversize_image_rejected(self, test_client):
        service = _barcode_service()
        service.max_file_size = 1024

        response = await test_client.post("/api/barcode/scan", files=_upload(b"\x00" * 4096))

        assert response.status_code == 400
        assert response.json()["details"] == {"field": "image"}
        service.decoder.decode_with_retry.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_image(self, test_client):
        service = _barcode_service()

        response = await test_client.post("/api/barcode/scan", files=_upload(b"\x89PNG\r\n\x1a\n broken"))

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "invalid_image"
        assert body["details"] == {"reason": "corrupt"}
        assert body["hint"]
        assert "debug" not in body
        assert body["request_id"] == response.headers["X-Request-ID"]
        service.decoder.decode_with_retry.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_barcode(self, test_client):
        service = _barcode_service(decode=NoBarcodeFoundError(attempts=2))

        response = await test_client.post("/api/barcode/scan", files=_upload())

        assert response.status_code == 400
        assert response.json()["error"] == "no_barcode_found"
        service.resolver.resolve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_declared_type_is_advisory(self, test_client):
        service = _barcode_service()

        response = await test_client.post("/api/barcode/scan", files=_upload(IMAGE, "application/octet-stream"))

        assert response.status_code == 200
        assert response.json()["barcode"] == "5449000000996"
        service.decoder.decode_with_retry.assert_called_once()


class TestReadUpload:

    @pytest.mark.asyncio
    async def test_reported_size_checked_before_reading(self):
        image = MagicMock(size=2048)
        image.read = AsyncMock(return_value=b"\x00" * 2048)
        image.close = AsyncMock()

        with pytest.raises(ValidationError) as exc_info:
            await read_upload(image, max_size=1024)

        assert exc_info.value.context["reported_size"] == 2048
        image.read.assert_not_awaited()
        image.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reads_and_closes(self):
        image = MagicMock(size=None)
        image.read = AsyncMock(return_value=b"data")
        image.close = AsyncMock()

        assert await read_upload(image, max_size=1024) == b"data"
        image.close.assert_awaited_once()


class TestReadRoute:

    @pytest.mark.asyncio
    async def test_read_skips_lookup(self, test_client):
        service = _barcode_service()

        response = await test_client.post("/api/barcode/read", files=_upload())

        assert response.status_code == 200
        assert response.json() == {"success": True, "barcode": "5449000000996"}
        service.resolver.resolve.assert_not_awaited()


class TestDisconnect:

    @pytest.mark.asyncio
    async def test_lookup_cancelled_when_client_leaves(self):
        request = MagicMock()
        request.is_disconnected = AsyncMock(return_value=True)
        started = asyncio.Event()
        cancelled = asyncio.Event()

        async def slow_lookup():
            started.set()
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        with pytest.raises(ClientDisconnected):
            await run_unless_disconnected(request, slow_lookup())
        await asyncio.sleep(0)

        assert started.is_set()
        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_result_returned_when_client_stays(self):
        request = MagicMock()
        request.is_disconnected = AsyncMock(return_value=False)

        async def lookup():
            return "ok"

        assert await run_unless_disconnected(request, lookup()) == "ok"


class TestOpenFoodFactsRoutes:

    @pytest.mark.asyncio
    async def test_product_found(self, test_client):
        client = _off_client(resolve=AsyncMock(return_value=PRODUCT))

        response = await test_client.get("/api/openfoodfacts/product/5449000000996")

        assert response.status_code == 200
        assert response.json()["product"]["id"] == "5449000000996"
        client.resolve.assert_awaited_once_with("5449000000996")

    @pytest.mark.asyncio
    async def test_product_not_found(self, test_client):
        _off_client(resolve=AsyncMock(return_value=None))

        response = await test_client.get("/api/openfoodfacts/product/0000000000000")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_product_unavailable_sets_retry_after(self, test_client):
        _off_client(resolve=AsyncMock(side_effect=ResolverUnavailableError(retry_after=30)))

        response = await test_client.get("/api/openfoodfacts/product/5449000000996")

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "30"
        assert response.json()["error"] == "product_lookup_unavailable"

    @pytest.mark.asyncio
    async def test_product_timeout(self, test_client):
        _off_client(resolve=AsyncMock(side_effect=ResolverTimeoutError()))

        response = await test_client.get("/api/openfoodfacts/product/5449000000996")

        assert response.status_code == 504
        assert response.json()["error"] == "product_lookup_timeout"

    @pytest.mark.asyncio
    async def test_search_blank_query(self, test_client, make_off_client):
        client = make_off_client(lambda request: httpx.Response(200, json={}))
        app.dependency_overrides[get_openfoodfacts_client] = lambda: client

        response = await test_client.get("/api/openfoodfacts/search", params={"q": "  "})

        assert response.status_code == 400
        assert response.json()["details"] == {"field": "q"}

    @pytest.mark.asyncio
    async def test_search_passes_paging(self, test_client):
        result = ProductSearchResponse(count=0, page=2, page_size=10, total_products=0, products=[])
        client = _off_client(search=AsyncMock(return_value=result))

        response = await test_client.get(
            "/api/openfoodfacts/search", params={"q": "cola", "page": 2, "page_size": 10}
        )

        assert response.status_code == 200
        assert response.json()["page"] == 2
        client.search.assert_awaited_once_with("cola", page=2, page_size=10)


class TestTransactionRoutes:

    @pytest.mark.asyncio
    async def test_list_sets_total_header(self, test_client, mock_db_session):
        record = Transaction(
            id=uuid4(),
            user_id="user-1",
            transaction_type="food_search",
            action="search_food",
            details={"query": "cola", "result_count": 3},
            status="completed",
            created_at=datetime(2024, 1, 15, tzinfo=timezone.utc),
        )
        page = MagicMock()
        page.scalars.return_value.all.return_value = [record]
        count = MagicMock()
        count.scalar.return_value = 12
        mock_db_session.execute.side_effect = [page, count]
        app.dependency_overrides[get_db_session] = lambda: mock_db_session

        response = await test_client.get("/api/transactions", params={"user_id": "user-1", "limit": 1})

        assert response.status_code == 200
        assert response.headers["X-Total-Count"] == "12"
        body = response.json()
        assert body["has_more"] is True
        assert body["transactions"][0]["metadata"] == {"query": "cola", "result_count": 3}

    @pytest.mark.asyncio
    async def test_list_without_user_id_is_rejected(self, test_client, mock_db_session):
        app.dependency_overrides[get_db_session] = lambda: mock_db_session

        response = await test_client.get("/api/transactions", params={"limit": 5})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "validation_error"
        assert body["details"] == {"field": "user_id"}
        mock_db_session.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_list_unknown_status_is_rejected(self, test_client, mock_db_session):
        app.dependency_overrides[get_db_session] = lambda: mock_db_session

        response = await test_client.get(
            "/api/transactions", params={"user_id": "user-1", "status": "archived"}
        )

        assert response.status_code == 400
        assert response.json()["details"] == {"field": "status"}
        mock_db_session.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_get_unknown_is_404(self, test_client, mock_db_session):
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        mock_db_session.execute.return_value = result
        app.dependency_overrides[get_db_session] = lambda: mock_db_session

        response = await test_client.get(f"/api/transactions/{uuid4()}")

        assert response.status_code == 404


class TestHealth:

    @pytest.mark.asyncio
    async def test_healthy(self, test_client):
        _off_client()
        with patch("nutriscan.routes.health.check_database", AsyncMock(return_value=True)):
            response = await test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["openfoodfacts"] == "closed"

    @pytest.mark.asyncio
    async def test_degraded_when_circuit_open(self, test_client):
        client = _off_client()
        client.status.return_value = "open"
        with patch("nutriscan.routes.health.check_database", AsyncMock(return_value=True)):
            response = await test_client.get("/health")

        assert response.json()["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_unhealthy_without_database(self, test_client):
        _off_client()
        with patch("nutriscan.routes.health.check_database", AsyncMock(side_effect=OSError("refused"))):
            response = await test_client.get("/health")

        body = response.json()
        assert body["status"] == "unhealthy"
        assert body["database"] == "disconnected"


class TestRequestId:

    @pytest.mark.asyncio
    async def test_client_request_id_echoed(self, test_client):
        _off_client(resolve=AsyncMock(return_value=None))

        response = await test_client.get(
            "/api/openfoodfacts/product/123", headers={"X-Request-ID": "app-abc123"}
        )

        assert response.headers["X-Request-ID"] == "app-abc123"
        assert response.json()["request_id"] == "app-abc123"
