# courier_dispatch/transport/order_polling.py
"""
Restaurant order polling.

Fetches the latest orders from the backend on a fixed interval and replaces
the order directory's contents. Every replace notifies the dispatch
orchestrator, which prunes its runtime state and re-checks the ready orders
for auto-dispatch.

Usage:
    poller = OrderPoller(directory=directory)
    await poller.start()
    # ... on shutdown:
    await poller.stop()
"""
from __future__ import annotations

import asyncio
from typing import Any

import aiohttp

from courier_dispatch.config import settings
from courier_dispatch.core.delivery.domain import Order
from courier_dispatch.infra.http_client import get_default_session
from courier_dispatch.infra.logging_config import get_logger
from courier_dispatch.infra.metrics import inc_counter
from courier_dispatch.infra.order_directory import InMemoryOrderDirectory, map_backend_order

logger = get_logger(__name__)

MAX_BACKOFF_SECONDS = 30


class OrderFetchError(Exception):
    """Order list could not be loaded from the backend."""

    def __init__(self, message: str, status: int = 0):
        self.status = status
        super().__init__(message)


async def fetch_orders(
    api_base: str,
    *,
    limit: int = 50,
    api_token: str | None = None,
) -> list[Order]:
    """GET {api_base}/orders?limit=N and map each payload to an Order.

    Malformed entries are skipped and logged; they never fail the whole poll.
    """
    headers = {"Authorization": f"Bearer {api_token}"} if api_token else {}
    session = get_default_session()
    try:
        async with session.get(
            f"{api_base.rstrip('/')}/orders",
            params={"limit": str(limit)},
            headers=headers,
        ) as resp:
            if resp.status >= 400:
                body = (await resp.text())[:200]
                raise OrderFetchError(f"Order fetch failed ({resp.status}): {body}", resp.status)
            data: Any = await resp.json()
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        raise OrderFetchError(f"Order fetch failed: {exc.__class__.__name__}") from exc

    raw_orders = data.get("orders", []) if isinstance(data, dict) else data
    orders: list[Order] = []
    for raw in raw_orders or []:
        try:
            orders.append(map_backend_order(raw))
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning(f"Skipping malformed order payload: {exc.__class__.__name__}: {exc}")
    return orders


class OrderPoller:
    """
    Fixed-interval polling loop for the restaurant's orders.

    Error handling:
    - On fetch errors: exponential backoff (1s → 2s → 4s → ... → 30s max),
      the directory keeps its last known contents
    - On cancellation: graceful shutdown
    """

    def __init__(
        self,
        directory: InMemoryOrderDirectory,
        *,
        api_base: str | None = None,
        api_token: str | None = None,
        interval: float | None = None,
        limit: int | None = None,
    ):
        self.directory = directory
        self.api_base = api_base or settings.restaurant_api_base
        self.api_token = api_token if api_token is not None else settings.api_token
        self.interval = interval if interval is not None else settings.order_poll_interval_seconds
        self.limit = limit or settings.order_poll_limit
        self._task: asyncio.Task | None = None
        self._running = False
        self._backoff = 1  # seconds, doubles on error, max 30

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the polling loop as a background task."""
        if self._running:
            logger.warning("Order poller already running")
            return
        if not self.api_base:
            logger.warning("Order poller not started: restaurant_id is not configured")
            return

        self._running = True
        self._task = asyncio.create_task(self._poll_loop(), name="order_poller")
        logger.info(f"Order poller started (interval={self.interval}s, limit={self.limit})")

    async def stop(self) -> None:
        """Stop the polling loop gracefully."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("Order poller stopped")

    async def poll_once(self) -> int:
        """Fetch once and replace the directory contents. Returns the order count."""
        orders = await fetch_orders(self.api_base, limit=self.limit, api_token=self.api_token)
        self.directory.replace_all(orders)
        inc_counter("order_polls_total", status="ok")
        return len(orders)

    async def _poll_loop(self) -> None:
        """Main polling loop."""
        while self._running:
            try:
                await self.poll_once()
                self._backoff = 1
                await asyncio.sleep(self.interval)

            except OrderFetchError as e:
                if not self._running:
                    break
                inc_counter("order_polls_total", status="failed")
                logger.error(f"Order polling error: {e}, backing off {self._backoff}s")
                await asyncio.sleep(self._backoff)
                self._backoff = min(self._backoff * 2, MAX_BACKOFF_SECONDS)

            except asyncio.CancelledError:
                break

            except Exception as e:
                if not self._running:
                    break
                logger.error(f"Order polling unexpected error: {e}", exc_info=True)
                await asyncio.sleep(self._backoff)
                self._backoff = min(self._backoff * 2, MAX_BACKOFF_SECONDS)
