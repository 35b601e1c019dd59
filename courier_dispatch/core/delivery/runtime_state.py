"""
Per-order dispatch runtime state.

Three keyed stores (held quote, local lifecycle state, last error) plus the
auto-dispatch trigger set. Every write replaces the whole mapping with a new
one; readers holding a reference always see a complete snapshot, never a
half-applied update.

Only the orchestrator writes here.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Optional

from courier_dispatch.core.delivery.domain import DispatchState, Quote

_EMPTY: Mapping = MappingProxyType({})


class DispatchRuntimeState:
    def __init__(self) -> None:
        self._quotes: Mapping[str, Quote] = _EMPTY
        self._states: Mapping[str, DispatchState] = _EMPTY
        self._errors: Mapping[str, str] = _EMPTY
        self._auto_triggered: frozenset[str] = frozenset()

    # -- reads ---------------------------------------------------------------

    def get_quote(self, order_id: str) -> Optional[Quote]:
        return self._quotes.get(order_id)

    def get_state(self, order_id: str) -> Optional[DispatchState]:
        return self._states.get(order_id)

    def get_error(self, order_id: str) -> Optional[str]:
        return self._errors.get(order_id)

    def was_auto_triggered(self, order_id: str) -> bool:
        return order_id in self._auto_triggered

    # -- writes --------------------------------------------------------------

    def set_quote(self, order_id: str, quote: Quote) -> None:
        # one held quote per order: a new quote replaces the old one
        self._quotes = _with(self._quotes, order_id, quote)

    def clear_quote(self, order_id: str) -> None:
        self._quotes = _without(self._quotes, order_id)

    def set_state(self, order_id: str, state: DispatchState) -> None:
        self._states = _with(self._states, order_id, state)

    def clear_state(self, order_id: str) -> None:
        self._states = _without(self._states, order_id)

    def set_error(self, order_id: str, message: Optional[str]) -> None:
        if message:
            self._errors = _with(self._errors, order_id, message)
        else:
            self._errors = _without(self._errors, order_id)

    def set_failure(self, order_id: str, message: str) -> None:
        self.set_state(order_id, DispatchState.FAILED)
        self.set_error(order_id, message)

    def mark_auto_triggered(self, order_id: str) -> None:
        self._auto_triggered = self._auto_triggered | {order_id}

    def clear_order(self, order_id: str) -> None:
        """Forget quote/state/error for one order (trigger marker is kept)."""
        self._states = _without(self._states, order_id)
        self._errors = _without(self._errors, order_id)
        self._quotes = _without(self._quotes, order_id)

    def prune(self, active_order_ids: Iterable[str]) -> None:
        """Keep quote/state/error only for orders still in the working set."""
        active = frozenset(active_order_ids)
        self._states = _only(self._states, active)
        self._errors = _only(self._errors, active)
        self._quotes = _only(self._quotes, active)

    def prune_auto_triggered(self, ready_order_ids: Iterable[str]) -> None:
        """Drop trigger markers for orders that left the ready set."""
        self._auto_triggered = self._auto_triggered & frozenset(ready_order_ids)


def _with(mapping: Mapping, key: str, value) -> Mapping:
    updated = dict(mapping)
    updated[key] = value
    return MappingProxyType(updated)


def _without(mapping: Mapping, key: str) -> Mapping:
    if key not in mapping:
        return mapping
    updated = dict(mapping)
    del updated[key]
    return MappingProxyType(updated)


def _only(mapping: Mapping, keep: frozenset[str]) -> Mapping:
    if all(key in keep for key in mapping):
        return mapping
    return MappingProxyType({k: v for k, v in mapping.items() if k in keep})
