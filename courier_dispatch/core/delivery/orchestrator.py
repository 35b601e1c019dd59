"""
Delivery dispatch orchestrator.

Decides when an order gets a courier, runs the quote -> accept sequence with
a single expired-quote retry, and answers the terminal's dispatch queries by
merging its own in-flight view with the backend-reported status.

Triggers:
- automatic: every change of the order list or the delivery policy re-scans
  the ready orders; each order gets at most one automatic attempt per ready
  episode (tracked in the trigger set, pruned when the order leaves "ready")
- manual: ``on_dispatch_driver`` from the terminal; the first call only
  fetches a quote so the operator can see the fee, the second accepts it

Both paths run ``dispatch_driver`` as a fire-and-forget task. The
``quoting`` state is claimed before the first ``await`` of an attempt, so a
second trigger for the same order returns immediately.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, TypeVar

from courier_dispatch.core.delivery.domain import (
    DeliveryPolicy,
    DeliveryProviderType,
    DispatchResult,
    DispatchState,
    DispatchView,
    DriverInfo,
    OrderStatus,
    Quote,
)
from courier_dispatch.core.delivery.errors import DeliveryGatewayError, is_quote_expired_error
from courier_dispatch.core.delivery.ports import (
    DeliveryGateway,
    OrderDirectory,
    PolicySource,
    Unsubscribe,
)
from courier_dispatch.core.delivery.reconciliation import (
    backend_dispatch_state,
    has_active_dispatch,
    merge_dispatch_state,
)
from courier_dispatch.core.delivery.runtime_state import DispatchRuntimeState
from courier_dispatch.infra.logging_config import get_logger, LogContext
from courier_dispatch.infra.metrics import DispatchMetrics

logger = get_logger(__name__)

_T = TypeVar("_T")

NOT_CONFIGURED_MESSAGE = "Delivery provider is not configured."
CREDENTIALS_MISSING_MESSAGE = "Delivery provider credentials are not configured."
QUOTE_FAILED_MESSAGE = "Failed to request delivery quote."
DISPATCH_FAILED_MESSAGE = "Driver dispatch failed."


class _OrderDropped(Exception):
    """The order was pruned while a gateway call was in flight."""


class DispatchOrchestrator:
    def __init__(
        self,
        *,
        orders: OrderDirectory,
        gateway: DeliveryGateway,
        policy: PolicySource,
        state: DispatchRuntimeState | None = None,
    ) -> None:
        self.orders = orders
        self.gateway = gateway
        self.policy = policy
        self.state = state or DispatchRuntimeState()
        self._tasks: set[asyncio.Task] = set()
        self._subscriptions: list[Unsubscribe] = []

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def attach(self) -> None:
        """Subscribe to order and policy changes and run the first evaluation."""
        if self._subscriptions:
            return
        self._subscriptions = [
            self.orders.subscribe(self._on_orders_changed),
            self.policy.subscribe(self._on_policy_changed),
        ]
        self._apply_provider(self.policy.current().provider)
        self._on_orders_changed()

    def detach(self) -> None:
        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions = []

    async def wait_idle(self) -> None:
        """Wait until every spawned dispatch/refresh task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        self.detach()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Dispatch orchestrator closed ({len(tasks)} task(s) cancelled)")

    def _on_orders_changed(self) -> None:
        self.prune_runtime()
        self.evaluate_auto_dispatch()

    def _on_policy_changed(self, previous: DeliveryPolicy, current: DeliveryPolicy) -> None:
        if previous.provider != current.provider:
            self._apply_provider(current.provider)
        self.evaluate_auto_dispatch()

    def _apply_provider(self, provider: DeliveryProviderType) -> None:
        self.gateway.set_provider_type(provider)
        if provider.is_daas:
            self._spawn(self._refresh_provider_status(), name=f"delivery_config_{provider.value}")

    async def _refresh_provider_status(self) -> None:
        await self.gateway.load_config_status()
        # readiness may have flipped; ready orders waiting on it get their attempt now
        self.evaluate_auto_dispatch()

    # ------------------------------------------------------------------
    # Triggering
    # ------------------------------------------------------------------

    def prune_runtime(self) -> None:
        ready_ids = {order.order_id for order in self.orders.ready_orders()}
        self.state.prune(self._working_set_ids())
        self.state.prune_auto_triggered(ready_ids)

    def _working_set_ids(self) -> set[str]:
        return {
            order.order_id
            for order in (
                *self.orders.pending_orders(),
                *self.orders.preparing_orders(),
                *self.orders.ready_orders(),
            )
        }

    def evaluate_auto_dispatch(self) -> None:
        if not self.policy.current().auto_dispatch:
            return
        if not self._is_dispatch_provider_ready():
            return
        for order in self.orders.ready_orders():
            self._maybe_auto_dispatch(order.order_id)

    def on_status_change(self, order_id: str, status: OrderStatus) -> None:
        """Kitchen status event for one order (after the backend accepted it)."""
        if status is OrderStatus.READY_FOR_PICKUP and self.policy.current().auto_dispatch:
            self._maybe_auto_dispatch(order_id)
            return
        self.state.clear_order(order_id)

    def on_dispatch_driver(self, order_id: str) -> None:
        """Manual dispatch from the terminal. Returns immediately."""
        self._spawn(
            self.dispatch_driver(order_id, auto_accept_quote=False),
            name=f"dispatch_manual_{order_id}",
        )

    def _maybe_auto_dispatch(self, order_id: str) -> None:
        if self.state.was_auto_triggered(order_id):
            return

        order = self.orders.get_order(order_id)
        if order is None or order.delivery_info is None:
            return
        if not self.gateway.is_configured():
            return
        if not self._is_dispatch_provider_ready():
            return
        if has_active_dispatch(order):
            return

        self.state.mark_auto_triggered(order_id)
        provider = self.policy.current().provider
        DispatchMetrics.auto_dispatch_triggered(provider.value)
        LogContext(logger, order_id=order_id, provider=provider.value).info("Auto-dispatch triggered")

        self._spawn(
            self.dispatch_driver(order_id, auto_accept_quote=True),
            name=f"dispatch_auto_{order_id}",
        )

    # ------------------------------------------------------------------
    # Dispatch sequence
    # ------------------------------------------------------------------

    async def dispatch_driver(self, order_id: str, *, auto_accept_quote: bool = False) -> None:
        if self.is_dispatching_delivery(order_id):
            return

        order = self.orders.get_order(order_id)
        if order is None or order.delivery_info is None:
            return

        provider = self.policy.current().provider.value
        log_ctx = LogContext(logger, order_id=order_id, provider=provider)

        if not self.gateway.is_configured():
            self.state.set_failure(order_id, NOT_CONFIGURED_MESSAGE)
            log_ctx.warning("Dispatch skipped: provider not configured")
            return

        # Claim the order before the first await; later triggers see it in flight.
        previous_local = self.state.get_state(order_id)
        self.state.set_state(order_id, DispatchState.QUOTING)

        try:
            if not await self._while_listed(order_id, self.gateway.ensure_selected_provider_configured()):
                self.state.set_failure(order_id, CREDENTIALS_MISSING_MESSAGE)
                log_ctx.warning("Dispatch skipped: provider credentials missing")
                return

            if not auto_accept_quote and not self._can_dispatch(order_id, previous_local):
                self._restore_local_state(order_id, previous_local)
                return

            self.state.set_error(order_id, None)

            quote = self.state.get_quote(order_id)
            quote_requested = False
            if quote is None:
                self.state.set_state(order_id, DispatchState.QUOTING)
                try:
                    quote = await self._request_quote(order_id, provider)
                except DeliveryGatewayError as exc:
                    self.state.set_failure(order_id, str(exc) or QUOTE_FAILED_MESSAGE)
                    log_ctx.warning(f"Delivery quote failed: {exc}")
                    return
                self.state.set_quote(order_id, quote)
                quote_requested = True

            # Manual flow stops here so the operator can confirm the fee.
            if (
                not auto_accept_quote
                and quote_requested
                and self.state.get_state(order_id) is not DispatchState.FAILED
            ):
                self.state.set_state(order_id, DispatchState.IDLE)
                log_ctx.info(f"Delivery quote ready: quote_id={quote.quote_id}, fee={quote.fee}")
                return

            result, error = await self._accept_quote(order_id, quote.quote_id, provider)

            if result is None and is_quote_expired_error(error):
                log_ctx.info(f"Quote {quote.quote_id} expired, requesting a fresh one")
                DispatchMetrics.expired_quote_retry(provider)
                self.state.clear_quote(order_id)
                self.state.set_state(order_id, DispatchState.QUOTING)
                try:
                    quote = await self._request_quote(order_id, provider)
                except DeliveryGatewayError as exc:
                    error = str(exc)
                else:
                    self.state.set_quote(order_id, quote)
                    result, error = await self._accept_quote(order_id, quote.quote_id, provider)

            if result is None:
                self.state.set_failure(order_id, error or DISPATCH_FAILED_MESSAGE)
                log_ctx.warning(f"Driver dispatch failed: {error}")
                return

            self.state.clear_quote(order_id)
            self.state.set_error(order_id, None)
            self.state.set_state(order_id, DispatchState.DISPATCHED)
            log_ctx.info(f"Driver dispatched: delivery_external_id={result.delivery_external_id}")

        except _OrderDropped:
            self.state.clear_order(order_id)
            log_ctx.info("Order left the working set mid-dispatch, attempt dropped")

        except Exception:
            log_ctx.error("Unexpected error during driver dispatch", exc_info=True)
            self.state.set_failure(order_id, DISPATCH_FAILED_MESSAGE)

    async def _request_quote(self, order_id: str, provider: str) -> Quote:
        with DispatchMetrics.track_gateway_call("quote", provider):
            try:
                quote = await self._while_listed(order_id, self.gateway.request_quote(order_id))
            except DeliveryGatewayError:
                DispatchMetrics.quote_requested(provider, "failed")
                raise
        DispatchMetrics.quote_requested(provider, "ok")
        return quote

    async def _accept_quote(
        self, order_id: str, quote_id: str, provider: str,
    ) -> tuple[Optional[DispatchResult], Optional[str]]:
        self.state.set_state(order_id, DispatchState.DISPATCHING)
        with DispatchMetrics.track_gateway_call("dispatch", provider):
            try:
                result = await self._while_listed(order_id, self.gateway.accept_quote(order_id, quote_id))
            except DeliveryGatewayError as exc:
                DispatchMetrics.dispatch_completed(provider, "failed")
                return None, str(exc)
        DispatchMetrics.dispatch_completed(provider, "ok")
        return result, None

    async def _while_listed(self, order_id: str, awaitable: Awaitable[_T]) -> _T:
        """Await a gateway call; raise _OrderDropped if the order was pruned meanwhile."""
        try:
            result = await awaitable
        except DeliveryGatewayError:
            self._raise_if_dropped(order_id)
            raise
        self._raise_if_dropped(order_id)
        return result

    def _raise_if_dropped(self, order_id: str) -> None:
        if order_id not in self._working_set_ids():
            raise _OrderDropped(order_id)

    def _restore_local_state(self, order_id: str, previous: Optional[DispatchState]) -> None:
        if previous is None:
            self.state.clear_state(order_id)
        else:
            self.state.set_state(order_id, previous)

    # ------------------------------------------------------------------
    # Query surface
    # ------------------------------------------------------------------

    def get_delivery_quote(self, order_id: str) -> Optional[Quote]:
        return self.state.get_quote(order_id)

    def get_dispatch_state(self, order_id: str) -> DispatchState:
        return self._displayed_state(order_id, self.state.get_state(order_id))

    def get_dispatch_error(self, order_id: str) -> Optional[str]:
        if self.get_dispatch_state(order_id) is DispatchState.DISPATCHED:
            return None
        return self.state.get_error(order_id)

    def is_dispatching_delivery(self, order_id: str) -> bool:
        return self.get_dispatch_state(order_id).in_flight

    def can_dispatch_delivery(self, order_id: str) -> bool:
        return self._can_dispatch(order_id, self.state.get_state(order_id))

    def dispatch_view(self, order_id: str) -> DispatchView:
        state = self.get_dispatch_state(order_id)
        return DispatchView(
            order_id=order_id,
            state=state,
            error=self.get_dispatch_error(order_id),
            quote=self.get_delivery_quote(order_id),
            is_dispatching=state.in_flight,
            can_dispatch=self.can_dispatch_delivery(order_id),
        )

    def _displayed_state(self, order_id: str, local: Optional[DispatchState]) -> DispatchState:
        backend = backend_dispatch_state(self.orders.get_order(order_id))
        return merge_dispatch_state(local, backend)

    def _can_dispatch(self, order_id: str, local: Optional[DispatchState]) -> bool:
        order = self.orders.get_order(order_id)
        if order is None or order.delivery_info is None:
            return False
        if not self.gateway.is_configured():
            return False
        if not self._is_dispatch_provider_ready():
            return False
        if self._displayed_state(order_id, local).in_flight:
            return False
        return not has_active_dispatch(order)

    def _is_dispatch_provider_ready(self) -> bool:
        provider = self.policy.current().provider
        return provider.is_daas and self.gateway.is_provider_configured_for(provider)

    # ------------------------------------------------------------------
    # Courier bookings
    # ------------------------------------------------------------------

    def delivery_external_id(self, order_id: str) -> Optional[str]:
        order = self.orders.get_order(order_id)
        if order is None or order.delivery_info is None:
            return None
        return order.delivery_info.delivery_external_id

    async def get_driver_info(self, order_id: str) -> Optional[DriverInfo]:
        external_id = self.delivery_external_id(order_id)
        if external_id is None:
            return None
        return await self.gateway.get_delivery_status(external_id)

    async def cancel_delivery(self, order_id: str) -> bool:
        """
        Cancel the courier booked for an order.

        The backend reports CANCELLED on its next order update; until then the
        displayed state stays ``dispatched``. Local quote/state/error are
        dropped on success.
        """
        external_id = self.delivery_external_id(order_id)
        if external_id is None:
            return False

        provider = self.policy.current().provider.value
        log_ctx = LogContext(logger, order_id=order_id, provider=provider)
        with DispatchMetrics.track_gateway_call("cancel", provider):
            cancelled = await self.gateway.cancel_delivery(order_id, external_id)
        DispatchMetrics.delivery_cancelled(provider, "ok" if cancelled else "failed")

        if cancelled:
            self.state.clear_order(order_id)
            log_ctx.info(f"Delivery cancelled: delivery_external_id={external_id}")
        else:
            log_ctx.warning(f"Delivery cancel refused: delivery_external_id={external_id}")
        return cancelled

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    def _spawn(self, coro: Awaitable[None], *, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        """Callback: drop finished task and log unhandled exceptions."""
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"Background task {task.get_name()!r} failed: {exc}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )
