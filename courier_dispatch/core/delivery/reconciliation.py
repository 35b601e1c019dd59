"""
Backend vs. local dispatch state.

The backend reports courier progress on the order itself; the orchestrator
keeps its own optimistic view while a quote/accept round trip is in flight.
Both are kept separately and merged on every read.
"""
from __future__ import annotations

from typing import Optional

from courier_dispatch.core.delivery.domain import (
    ACTIVE_DISPATCH_STATUSES,
    TERMINAL_FAILURE_STATUSES,
    DispatchState,
    DispatchStatus,
    Order,
)


def has_active_dispatch(order: Order) -> bool:
    """True once a courier request is underway or finished.

    Quoting is reversible, dispatching is not, so this is the gate that keeps
    an order from being dispatched twice.
    """
    info = order.delivery_info
    if info is None:
        return False
    status = info.dispatch_status
    if status is None:
        return bool(info.delivery_external_id)
    if status in TERMINAL_FAILURE_STATUSES or status is DispatchStatus.QUOTED:
        return False
    return status in ACTIVE_DISPATCH_STATUSES


def backend_dispatch_state(order: Optional[Order]) -> DispatchState:
    if order is None or order.delivery_info is None:
        return DispatchState.IDLE

    info = order.delivery_info
    status = info.dispatch_status
    if status in TERMINAL_FAILURE_STATUSES:
        return DispatchState.FAILED
    if (status is not None and status is not DispatchStatus.QUOTED) or info.delivery_external_id:
        return DispatchState.DISPATCHED
    return DispatchState.IDLE


def merge_dispatch_state(
    local: Optional[DispatchState],
    backend: DispatchState,
) -> DispatchState:
    """Displayed state from the local in-flight view and the backend-derived one.

    - backend ``dispatched`` always wins
    - backend ``failed`` is hidden while a local attempt is in flight
    - otherwise local if recorded, else backend
    """
    if backend is DispatchState.DISPATCHED:
        return DispatchState.DISPATCHED
    if backend is DispatchState.FAILED and not (local is not None and local.in_flight):
        return DispatchState.FAILED
    return local if local is not None else backend
