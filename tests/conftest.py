# tests/conftest.py
"""Pytest configuration and fixtures"""
import asyncio
import pytest
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from courier_dispatch.core.delivery.domain import (  # noqa: E402
    DeliveryInfo,
    DeliveryPolicy,
    DeliveryProviderType,
    DispatchResult,
    DriverInfo,
    Order,
    OrderStatus,
    Quote,
)
from courier_dispatch.core.delivery.orchestrator import DispatchOrchestrator  # noqa: E402
from courier_dispatch.infra.metrics import get_metrics_collector  # noqa: E402
from courier_dispatch.infra.order_directory import InMemoryOrderDirectory  # noqa: E402
from courier_dispatch.infra.policy_store import InMemoryPolicyStore  # noqa: E402


def make_quote(quote_id: str = "Q1", fee: float = 6.25, provider=DeliveryProviderType.DOORDASH) -> Quote:
    return Quote(
        provider=provider,
        quote_id=quote_id,
        fee=fee,
        estimated_pickup_at="2026-01-01T12:10:00Z",
        estimated_delivery_at="2026-01-01T12:35:00Z",
        expires_at="2026-01-01T12:05:00Z",
    )


def make_order(
    order_id: str = "O1",
    status: OrderStatus = OrderStatus.READY_FOR_PICKUP,
    delivery_info: DeliveryInfo | None = DeliveryInfo(),
    **kwargs,
) -> Order:
    return Order(order_id=order_id, status=status, delivery_info=delivery_info, **kwargs)


class FakeGateway:
    """
    Scriptable delivery gateway.

    ``quotes`` / ``accepts`` are consumed in order; an Exception entry is
    raised instead of returned. When exhausted, a default payload is used.
    """

    def __init__(self, *, configured: bool = True, credentials: bool = True):
        self.configured = configured
        self.credentials = credentials
        self.credentials_after_load: bool | None = None
        self.provider_type: DeliveryProviderType | None = None
        self.quotes: list = []
        self.accepts: list = []
        self.quote_calls: list[str] = []
        self.accept_calls: list[tuple[str, str]] = []
        self.provider_calls: list[DeliveryProviderType] = []
        self.load_calls = 0
        self.quote_gate: asyncio.Event | None = None
        self.cancel_result = True
        self.cancel_calls: list[tuple[str, str]] = []
        self.driver_info: DriverInfo | None = None
        self.status_calls: list[str] = []

    def is_configured(self) -> bool:
        return self.configured

    def is_provider_configured_for(self, provider: DeliveryProviderType) -> bool:
        return self.credentials and provider.is_daas

    def set_provider_type(self, provider: DeliveryProviderType) -> None:
        self.provider_type = provider
        self.provider_calls.append(provider)

    async def load_config_status(self):
        self.load_calls += 1
        if self.credentials_after_load is not None:
            self.credentials = self.credentials_after_load
        return None

    async def ensure_selected_provider_configured(self) -> bool:
        return self.configured and self.credentials

    async def request_quote(self, order_id: str) -> Quote:
        self.quote_calls.append(order_id)
        if self.quote_gate is not None:
            await self.quote_gate.wait()
        result = self.quotes.pop(0) if self.quotes else make_quote(f"Q{len(self.quote_calls)}")
        if isinstance(result, Exception):
            raise result
        return result

    async def accept_quote(self, order_id: str, quote_id: str) -> DispatchResult:
        self.accept_calls.append((order_id, quote_id))
        result = self.accepts.pop(0) if self.accepts else DispatchResult(
            delivery_external_id=f"D{len(self.accept_calls)}",
            tracking_url="https://track.example.com/D1",
            estimated_delivery_at="2026-01-01T12:35:00Z",
        )
        if isinstance(result, Exception):
            raise result
        return result

    async def cancel_delivery(self, order_id: str, delivery_external_id: str) -> bool:
        self.cancel_calls.append((order_id, delivery_external_id))
        return self.cancel_result

    async def get_delivery_status(self, delivery_external_id: str) -> DriverInfo | None:
        self.status_calls.append(delivery_external_id)
        return self.driver_info


@pytest.fixture(autouse=True)
def reset_metrics():
    """Metrics collector is process-global"""
    get_metrics_collector().reset()
    yield
    get_metrics_collector().reset()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def directory():
    return InMemoryOrderDirectory()


@pytest.fixture
def policy_store():
    return InMemoryPolicyStore(DeliveryPolicy(provider=DeliveryProviderType.DOORDASH, auto_dispatch=True))


@pytest.fixture
def orchestrator(gateway, directory, policy_store):
    return DispatchOrchestrator(orders=directory, gateway=gateway, policy=policy_store)
