"""Reconciliation poller for the order confirmation page

After the gateway redirects the buyer back, all the client holds is the
checkout session id. The order shows up once the payment event has been
materialized, so the client polls the lookup endpoint at a fixed interval
for a bounded number of attempts.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from marketplace.core.config import settings

logger = logging.getLogger(__name__)

FOUND = "found"
TIMEOUT = "timeout"
CANCELLED = "cancelled"

CORRELATION_LENGTH = 8

FetchOrder = Callable[[str], Awaitable[Optional[Dict[str, Any]]]]


def correlation_fragment(external_transaction_id: str, length: int = CORRELATION_LENGTH) -> str:
    """Short, shareable tail of the transaction id for support requests"""
    return external_transaction_id[-length:]


def timeout_message(fragment: str) -> str:
    return (
        "We received your payment but your order is taking longer than usual to appear. "
        f"Please contact support and mention reference {fragment}."
    )


@dataclass
class ReconciliationResult:
    status: str
    attempts: int
    order: Optional[Dict[str, Any]] = None
    correlation_id: Optional[str] = None
    message: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.status == FOUND


class ReconciliationPoller:
    """Bounded fixed-interval poll for an order by external transaction id

    ``fetch_order`` returns the order (any truthy mapping) or None for
    "not there yet". ``sleep`` is injectable so tests can run on a fake clock.
    """

    def __init__(
        self,
        fetch_order: FetchOrder,
        interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.fetch_order = fetch_order
        self.interval = settings.RECONCILIATION_POLL_INTERVAL if interval is None else interval
        self.max_attempts = settings.RECONCILIATION_MAX_ATTEMPTS if max_attempts is None else max_attempts
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.interval < 0:
            raise ValueError("interval must not be negative")
        self.sleep = sleep

    async def _wait(self, cancel_event: Optional[asyncio.Event]):
        """Sleep one interval, returning early once ``cancel_event`` is set"""
        if cancel_event is None:
            await self.sleep(self.interval)
            return
        sleeper = asyncio.ensure_future(self.sleep(self.interval))
        cancelled = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({sleeper, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sleeper.cancel()
            cancelled.cancel()

    async def poll(self, external_transaction_id: str, cancel_event: Optional[asyncio.Event] = None) -> ReconciliationResult:
        """Poll until the order appears, attempts run out, or ``cancel_event`` is set

        Cancelling the task running this coroutine also stops it; the
        CancelledError propagates as usual.
        """
        fragment = correlation_fragment(external_transaction_id)
        attempts = 0

        while attempts < self.max_attempts:
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Reconciliation for {fragment} cancelled after {attempts} attempt(s)")
                return ReconciliationResult(status=CANCELLED, attempts=attempts, correlation_id=fragment)

            attempts += 1
            order = await self.fetch_order(external_transaction_id)
            if order:
                logger.info(f"Order for {fragment} found on attempt {attempts}")
                return ReconciliationResult(status=FOUND, attempts=attempts, order=order, correlation_id=fragment)

            # No wait after the final attempt
            if attempts < self.max_attempts:
                await self._wait(cancel_event)

        logger.warning(f"Order for {fragment} not found after {attempts} attempt(s)")
        return ReconciliationResult(
            status=TIMEOUT,
            attempts=attempts,
            correlation_id=fragment,
            message=timeout_message(fragment),
        )


class OrderLookupClient:
    """HTTP ``fetch_order`` against ``GET /orders?external_transaction_id=...``"""

    def __init__(self, base_url: Optional[str] = None, client: Optional[httpx.AsyncClient] = None, timeout: float = 5.0):
        self.base_url = (base_url or settings.BACKEND_URL).rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def fetch_order(self, external_transaction_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = await self.client.get(
                f"{self.base_url}/orders",
                params={"external_transaction_id": external_transaction_id},
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            # Treated as "not yet"; the poller's attempt bound still applies
            logger.warning(f"Order lookup for {correlation_fragment(external_transaction_id)} failed: {e}")
            return None

        if body.get("status") != FOUND:
            return None
        return body.get("order")

    async def aclose(self):
        if self._owns_client:
            await self.client.aclose()
