"""
NutriScan Backend — OpenFoodFacts Client
=========================================

What:  Product lookup by barcode and free-text product search against the
       OpenFoodFacts (OFF) public API.
Why:   A decoded barcode is only useful to the app once it is matched to a
       product with nutrition data.
How:   One shared httpx.AsyncClient (connection pool, base URL, User-Agent,
       timeout). Lookups are single-attempt behind a circuit breaker;
       searches retry transient failures with tenacity backoff.
Who:   BarcodeService (scan continuation) and the /api/openfoodfacts routes.
When:  Created once at import; the HTTP pool is closed in the app lifespan.

Outcome Mapping (product lookup):
    200 + product           → ProductRecord
    200 + status == 0       → None (not found)
    4xx                     → None (not found)
    5xx / invalid JSON      → ResolverUnavailableError
    transport error         → ResolverUnavailableError
    timeout                 → ResolverTimeoutError
    circuit open            → ResolverUnavailableError (no request sent)

A "not found" answer is a healthy upstream and counts as a breaker success.
"""

import asyncio
import logging
import time
import uuid
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError as PydanticValidationError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from nutriscan import __version__
from nutriscan.config import settings
from nutriscan.exceptions import (
    ResolverTimeoutError,
    ResolverUnavailableError,
    ValidationError,
)
from nutriscan.schemas.product import ProductRecord, ProductSearchResponse

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Stops calling OFF for a while after repeated failures.

    State Machine:
        CLOSED     normal operation; each failure increments failure_count,
                   reaching the threshold opens the circuit
        OPEN       calls are rejected instantly with ResolverUnavailableError
                   until recovery_timeout seconds have passed
        HALF_OPEN  exactly one trial call is let through; concurrent callers
                   are rejected while it is in flight. Success closes the
                   circuit, failure re-opens it and restarts the timer

    Not thread-safe; it is only touched from the event loop.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None
        self.trial_in_flight = False

    def _reject(self, retry_after: int) -> ResolverUnavailableError:
        return ResolverUnavailableError(
            message="The product database is temporarily unavailable (circuit open)",
            retry_after=retry_after,
            context={"circuit_state": self.state},
        )

    def can_execute(self) -> bool:
        """
        Returns True when a call may proceed.

        Raises:
            ResolverUnavailableError: circuit is OPEN and still recovering,
                or HALF_OPEN with the trial call already in flight.
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = time.time() - (self.last_failure_time or 0)
            if elapsed < self.recovery_timeout:
                raise self._reject(max(1, int(self.recovery_timeout - elapsed)))
            logger.info("Circuit breaker transitioning to HALF_OPEN after %.1fs", elapsed)
            self.state = self.HALF_OPEN

        if self.trial_in_flight:
            raise self._reject(1)
        self.trial_in_flight = True
        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker transitioning to CLOSED (OpenFoodFacts recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None
        self.trial_in_flight = False

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()
        self.trial_in_flight = False

        if self.state == self.HALF_OPEN:
            logger.warning("Circuit breaker returning to OPEN (trial request failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Circuit breaker OPENING after %d consecutive failures",
                self.failure_count,
            )
            self.state = self.OPEN

    def release(self) -> None:
        """The call ended without an outcome (cancelled); free the trial slot."""
        self.trial_in_flight = False


class _UpstreamServerError(Exception):
    """OFF answered with a 5xx; retried like a transport failure."""

    def __init__(self, status_code: int):
        super().__init__(f"OpenFoodFacts returned HTTP {status_code}")
        self.status_code = status_code


def search_backoff(min_wait: float, max_wait: float, jitter: float):
    """
    Wait before search retry n: min_wait * 2^(n-1), capped at max_wait, plus
    up to `jitter` random seconds.
    """
    return wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait) + wait_random(0, jitter)


# ══════════════════════════════════════════════════════════════════════════
# OpenFoodFacts Client
# ══════════════════════════════════════════════════════════════════════════

class OpenFoodFactsClient:
    """
    Async OFF API client.

    Args:
        http_client: Pre-built client (tests pass one with httpx.MockTransport).
            When omitted a pooled client is created from settings.
        circuit_breaker: Shared breaker; a fresh one is built from settings
            when omitted.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.http = http_client or httpx.AsyncClient(
            base_url=settings.openfoodfacts_base_url,
            timeout=httpx.Timeout(settings.product_lookup_timeout),
            headers={"User-Agent": f"NutriScan/{__version__}"},
        )
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )

    async def aclose(self) -> None:
        await self.http.aclose()

    # ── Product Lookup ────────────────────────────────────────────────────

    async def resolve(self, barcode: str) -> Optional[ProductRecord]:
        """
        Look a barcode up in OFF. Single attempt, no retry.

        Returns:
            The product, or None when OFF does not know the barcode.

        Raises:
            ResolverTimeoutError: no answer within product_lookup_timeout.
            ResolverUnavailableError: transport failure, 5xx, bad JSON or
                circuit open.
        """
        request_id = str(uuid.uuid4())[:8]
        self.circuit_breaker.can_execute()

        start_time = time.time()
        try:
            response = await self.http.get(f"/api/v0/product/{quote(barcode, safe='')}.json")
        except asyncio.CancelledError:
            self.circuit_breaker.release()
            raise
        except httpx.TimeoutException as e:
            self.circuit_breaker.record_failure()
            logger.warning("[%s] OFF lookup for %s timed out", request_id, barcode)
            raise ResolverTimeoutError(
                context={"request_id": request_id, "barcode": barcode, "error": str(e)}
            ) from e
        except httpx.HTTPError as e:
            self.circuit_breaker.record_failure()
            logger.warning("[%s] OFF lookup for %s failed: %s", request_id, barcode, e)
            raise ResolverUnavailableError(
                context={"request_id": request_id, "barcode": barcode, "error": str(e)}
            ) from e

        duration_ms = (time.time() - start_time) * 1000

        if response.status_code >= 500:
            self.circuit_breaker.record_failure()
            logger.warning(
                "[%s] OFF lookup for %s returned HTTP %d in %.0fms",
                request_id,
                barcode,
                response.status_code,
                duration_ms,
            )
            raise ResolverUnavailableError(
                context={"request_id": request_id, "status_code": response.status_code}
            )

        if response.status_code >= 400:
            self.circuit_breaker.record_success()
            logger.info(
                "[%s] OFF lookup for %s returned HTTP %d, treating as not found",
                request_id,
                barcode,
                response.status_code,
            )
            return None

        try:
            data = response.json()
        except ValueError as e:
            self.circuit_breaker.record_failure()
            logger.warning("[%s] OFF lookup for %s returned invalid JSON", request_id, barcode)
            raise ResolverUnavailableError(
                context={"request_id": request_id, "error": str(e)}
            ) from e

        if not isinstance(data, dict):
            data = {}
        product = data.get("product")
        if data.get("status") == 0 or not isinstance(product, dict):
            self.circuit_breaker.record_success()
            logger.info("[%s] Product %s not found in OFF (%.0fms)", request_id, barcode, duration_ms)
            return None

        try:
            record = ProductRecord.from_off(product, fallback_code=barcode)
        except PydanticValidationError as e:
            self.circuit_breaker.record_failure()
            logger.warning("[%s] OFF product %s failed validation: %s", request_id, barcode, e)
            raise ResolverUnavailableError(
                context={"request_id": request_id, "barcode": barcode, "error": str(e)}
            ) from e
        self.circuit_breaker.record_success()
        logger.info(
            "[%s] Resolved %s → %r in %.0fms",
            request_id,
            barcode,
            record.name,
            duration_ms,
        )
        return record

    # ── Search ────────────────────────────────────────────────────────────

    async def search(self, query: str, page: int = 1, page_size: int = 20) -> ProductSearchResponse:
        """
        Free-text product search.

        `page` is clamped to >= 1 and `page_size` to [1, 100]. Hits without
        a code or a name are dropped, so `count` may be below `page_size`.

        Raises:
            ValidationError: blank query.
            ResolverTimeoutError / ResolverUnavailableError: OFF still
                failing after all retry attempts.
        """
        query = (query or "").strip()
        if not query:
            raise ValidationError(message="Search query is required", field="q")

        page = max(1, page)
        page_size = min(max(1, page_size), MAX_PAGE_SIZE)

        self.circuit_breaker.can_execute()
        try:
            data = await self._fetch_search(query, page, page_size)
        except asyncio.CancelledError:
            self.circuit_breaker.release()
            raise
        except httpx.TimeoutException as e:
            self.circuit_breaker.record_failure()
            raise ResolverTimeoutError(context={"query": query, "error": str(e)}) from e
        except (httpx.HTTPError, _UpstreamServerError, ValueError) as e:
            self.circuit_breaker.record_failure()
            logger.error("OFF search for %r failed after retries: %s", query, e)
            raise ResolverUnavailableError(
                context={"query": query, "error": str(e), "attempts": settings.retry_max_attempts}
            ) from e
        self.circuit_breaker.record_success()

        result = ProductSearchResponse.from_off(data, page=page, page_size=page_size)
        logger.info(
            "OFF search %r page %d: %d products kept, %d total",
            query,
            page,
            result.count,
            result.total_products,
        )
        return result

    @retry(
        retry=retry_if_exception_type((httpx.TransportError, _UpstreamServerError)),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=search_backoff(settings.retry_min_wait, settings.retry_max_wait, settings.retry_jitter),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _fetch_search(self, query: str, page: int, page_size: int) -> Dict[str, Any]:
        """One search request; 4xx is an empty result, 5xx raises for retry."""
        response = await self.http.get(
            "/cgi/search.pl",
            params={
                "search_terms": query,
                "search_simple": 1,
                "action": "process",
                "json": 1,
                "page": page,
                "page_size": page_size,
            },
        )
        if response.status_code >= 500:
            raise _UpstreamServerError(response.status_code)
        if response.status_code >= 400:
            logger.info("OFF search returned HTTP %d, returning no results", response.status_code)
            return {"products": [], "count": 0}
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError("OpenFoodFacts search returned a non-object body")
        return data

    def status(self) -> str:
        """Circuit breaker state, reported by /health."""
        return self.circuit_breaker.state


# Singleton instance
openfoodfacts_client = OpenFoodFactsClient()


def get_openfoodfacts_client() -> OpenFoodFactsClient:
    """FastAPI dependency; overridden in tests."""
    return openfoodfacts_client
