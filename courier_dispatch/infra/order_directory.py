# courier_dispatch/infra/order_directory.py
"""
In-memory order directory.

Holds the terminal's view of today's orders, fed by the order poller and by
kitchen status events. Subscribers are notified after every change; the
dispatch orchestrator uses this to prune its runtime state and re-scan the
ready orders.

Backend order payloads use camelCase keys and lowercase statuses
(pending/confirmed/preparing/ready/completed/cancelled); map_backend_order()
converts them into domain Orders.
"""
from __future__ import annotations

from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Optional

from courier_dispatch.core.delivery.domain import (
    DeliveryInfo,
    DeliveryProviderType,
    DispatchStatus,
    Order,
    OrderStatus,
)
from courier_dispatch.infra.logging_config import get_logger

logger = get_logger(__name__)

_BACKEND_STATUS_MAP: dict[str, OrderStatus] = {
    "pending": OrderStatus.RECEIVED,
    "confirmed": OrderStatus.RECEIVED,
    "preparing": OrderStatus.IN_PREPARATION,
    "ready": OrderStatus.READY_FOR_PICKUP,
    "completed": OrderStatus.CLOSED,
    "cancelled": OrderStatus.VOIDED,
}


def _enum_or_none(enum_cls, value):
    if value in (None, ""):
        return None
    try:
        return enum_cls(value)
    except ValueError:
        logger.warning(f"Unknown {enum_cls.__name__} value from backend: {value!r}")
        return None


def _fee_or_none(value) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _map_delivery_info(raw: dict[str, Any]) -> Optional[DeliveryInfo]:
    nested = raw.get("deliveryInfo")
    if isinstance(nested, dict):
        source = nested
    elif raw.get("deliveryAddress"):
        # Older API versions flatten delivery fields onto the order
        source = raw
    else:
        return None

    return DeliveryInfo(
        dispatch_status=_enum_or_none(DispatchStatus, source.get("dispatchStatus")),
        delivery_external_id=source.get("deliveryExternalId") or None,
        delivery_provider=_enum_or_none(DeliveryProviderType, source.get("deliveryProvider")),
        delivery_tracking_url=source.get("deliveryTrackingUrl") or None,
        estimated_delivery_at=source.get("deliveryEstimatedAt") or source.get("estimatedDeliveryAt") or None,
        delivery_fee=_fee_or_none(source.get("deliveryFee")),
    )


def _throttle_state(raw: dict[str, Any]) -> str:
    throttle = raw.get("throttle")
    state = throttle.get("state") if isinstance(throttle, dict) else None
    return str(state or raw.get("throttleState") or "").upper()


def map_backend_order(raw: dict[str, Any]) -> Order:
    """Convert one backend order payload into a domain Order."""
    backend_status = str(raw.get("status") or "").lower()
    return Order(
        order_id=str(raw["id"]),
        status=_BACKEND_STATUS_MAP.get(backend_status, OrderStatus.RECEIVED),
        delivery_info=_map_delivery_info(raw),
        order_number=str(raw.get("orderNumber") or ""),
        throttle_held=_throttle_state(raw) == "HELD",
    )


class InMemoryOrderDirectory:
    """
    Order store with change notification.

    The order mapping is replaced on every write, so a reader iterating over
    orders() never observes a partial update.
    """

    def __init__(self, orders: Iterable[Order] = ()):
        self._orders: Mapping[str, Order] = MappingProxyType({o.order_id: o for o in orders})
        self._subscribers: list[Callable[[], None]] = []

    # -- reads ---------------------------------------------------------------

    def get_order(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    def orders(self) -> list[Order]:
        return list(self._orders.values())

    def pending_orders(self) -> list[Order]:
        return self._by_status(OrderStatus.RECEIVED)

    def preparing_orders(self) -> list[Order]:
        return self._by_status(OrderStatus.IN_PREPARATION)

    def ready_orders(self) -> list[Order]:
        return [o for o in self._orders.values() if o.status is OrderStatus.READY_FOR_PICKUP]

    def _by_status(self, status: OrderStatus) -> list[Order]:
        return [o for o in self._orders.values() if o.status is status and not o.throttle_held]

    # -- writes --------------------------------------------------------------

    def replace_all(self, orders: Iterable[Order]) -> None:
        self._orders = MappingProxyType({o.order_id: o for o in orders})
        self._notify()

    def upsert(self, order: Order) -> None:
        updated = dict(self._orders)
        updated[order.order_id] = order
        self._orders = MappingProxyType(updated)
        self._notify()

    def remove(self, order_id: str) -> bool:
        if order_id not in self._orders:
            return False
        updated = dict(self._orders)
        del updated[order_id]
        self._orders = MappingProxyType(updated)
        self._notify()
        return True

    def apply_status(self, order_id: str, status: OrderStatus) -> Optional[Order]:
        """Set the kitchen status of a known order. Returns the updated order."""
        order = self._orders.get(order_id)
        if order is None:
            return None
        if order.status is status:
            return order
        updated = Order(
            order_id=order.order_id,
            status=status,
            delivery_info=order.delivery_info,
            order_number=order.order_number,
            throttle_held=order.throttle_held,
        )
        self.upsert(updated)
        return updated

    # -- notifications -------------------------------------------------------

    def subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback()
            except Exception:
                logger.error("Order directory subscriber failed", exc_info=True)
