# tests/test_reconciliation.py
"""Tests for courier_dispatch/core/delivery/reconciliation.py"""
import pytest

from conftest import make_order
from courier_dispatch.core.delivery.domain import DeliveryInfo, DispatchState, DispatchStatus
from courier_dispatch.core.delivery.reconciliation import (
    backend_dispatch_state,
    has_active_dispatch,
    merge_dispatch_state,
)


def _order(status=None, external_id=None):
    return make_order(delivery_info=DeliveryInfo(dispatch_status=status, delivery_external_id=external_id))


class TestHasActiveDispatch:
    def test_no_delivery_info(self):
        assert not has_active_dispatch(make_order(delivery_info=None))

    def test_fresh_delivery_order(self):
        assert not has_active_dispatch(_order())

    def test_external_id_without_status(self):
        assert has_active_dispatch(_order(external_id="D1"))

    def test_quoted_is_reversible(self):
        assert not has_active_dispatch(_order(DispatchStatus.QUOTED, "D1"))

    @pytest.mark.parametrize("status", [DispatchStatus.FAILED, DispatchStatus.CANCELLED])
    def test_terminal_failure_allows_redispatch(self, status):
        assert not has_active_dispatch(_order(status, "D1"))

    @pytest.mark.parametrize("status", [
        DispatchStatus.DISPATCH_REQUESTED,
        DispatchStatus.DRIVER_ASSIGNED,
        DispatchStatus.PICKED_UP,
        DispatchStatus.DELIVERED,
    ])
    def test_courier_lifecycle_is_active(self, status):
        assert has_active_dispatch(_order(status))


class TestBackendDispatchState:
    def test_missing_order(self):
        assert backend_dispatch_state(None) is DispatchState.IDLE

    def test_no_delivery_info(self):
        assert backend_dispatch_state(make_order(delivery_info=None)) is DispatchState.IDLE

    def test_quoted(self):
        assert backend_dispatch_state(_order(DispatchStatus.QUOTED)) is DispatchState.IDLE

    def test_failed_and_cancelled(self):
        assert backend_dispatch_state(_order(DispatchStatus.FAILED)) is DispatchState.FAILED
        assert backend_dispatch_state(_order(DispatchStatus.CANCELLED, "D1")) is DispatchState.FAILED

    def test_lifecycle_status(self):
        assert backend_dispatch_state(_order(DispatchStatus.DRIVER_AT_PICKUP)) is DispatchState.DISPATCHED

    def test_external_id_only(self):
        assert backend_dispatch_state(_order(external_id="D1")) is DispatchState.DISPATCHED


class TestMergeDispatchState:
    @pytest.mark.parametrize("local", [None, *DispatchState])
    def test_backend_dispatched_always_wins(self, local):
        assert merge_dispatch_state(local, DispatchState.DISPATCHED) is DispatchState.DISPATCHED

    @pytest.mark.parametrize("local", [None, DispatchState.IDLE, DispatchState.FAILED, DispatchState.DISPATCHED])
    def test_backend_failure_shown_when_not_in_flight(self, local):
        assert merge_dispatch_state(local, DispatchState.FAILED) is DispatchState.FAILED

    @pytest.mark.parametrize("local", [DispatchState.QUOTING, DispatchState.DISPATCHING])
    def test_backend_failure_hidden_while_in_flight(self, local):
        assert merge_dispatch_state(local, DispatchState.FAILED) is local

    def test_local_state_used_when_backend_idle(self):
        assert merge_dispatch_state(DispatchState.FAILED, DispatchState.IDLE) is DispatchState.FAILED
        assert merge_dispatch_state(None, DispatchState.IDLE) is DispatchState.IDLE
