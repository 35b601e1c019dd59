from __future__ import annotations
from typing import Callable, Optional, Protocol

from courier_dispatch.core.delivery.domain import (
    DeliveryPolicy,
    DeliveryProviderType,
    DispatchResult,
    DriverInfo,
    Order,
    ProviderConfigStatus,
    Quote,
)

Unsubscribe = Callable[[], None]


class DeliveryGateway(Protocol):
    def is_configured(self) -> bool: ...
    def is_provider_configured_for(self, provider: DeliveryProviderType) -> bool: ...
    def set_provider_type(self, provider: DeliveryProviderType) -> None: ...

    async def load_config_status(self) -> Optional[ProviderConfigStatus]: ...

    async def ensure_selected_provider_configured(self) -> bool:
        """
        True  => selected provider has confirmed credentials (refreshes status if unknown)
        False => no DaaS provider selected, or credentials missing on the backend
        """
        ...

    async def request_quote(self, order_id: str) -> Quote:
        """Raises DeliveryGatewayError with an operator-readable message."""
        ...

    async def accept_quote(self, order_id: str, quote_id: str) -> DispatchResult:
        """Raises DeliveryGatewayError with an operator-readable message."""
        ...

    async def cancel_delivery(self, order_id: str, delivery_external_id: str) -> bool: ...

    async def get_delivery_status(self, delivery_external_id: str) -> Optional[DriverInfo]:
        """None when the status is unavailable (no provider, backend error)."""
        ...


class OrderDirectory(Protocol):
    def get_order(self, order_id: str) -> Optional[Order]: ...
    def pending_orders(self) -> list[Order]: ...
    def preparing_orders(self) -> list[Order]: ...
    def ready_orders(self) -> list[Order]: ...
    def subscribe(self, callback: Callable[[], None]) -> Unsubscribe: ...


class PolicySource(Protocol):
    def current(self) -> DeliveryPolicy: ...
    def subscribe(self, callback: Callable[[DeliveryPolicy, DeliveryPolicy], None]) -> Unsubscribe: ...
