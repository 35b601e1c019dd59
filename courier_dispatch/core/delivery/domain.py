from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


# ============================================================================
# ENUMS
# ============================================================================

class DeliveryProviderType(str, Enum):
    DOORDASH = "doordash"
    UBER = "uber"
    SELF = "self"
    NONE = "none"

    @property
    def is_daas(self) -> bool:
        """DaaS providers dispatch third-party couriers and need live credentials."""
        return self in (DeliveryProviderType.DOORDASH, DeliveryProviderType.UBER)


class DispatchStatus(str, Enum):
    """Backend-authoritative courier lifecycle status."""
    QUOTED = "QUOTED"
    DISPATCH_REQUESTED = "DISPATCH_REQUESTED"
    DRIVER_ASSIGNED = "DRIVER_ASSIGNED"
    DRIVER_EN_ROUTE_TO_PICKUP = "DRIVER_EN_ROUTE_TO_PICKUP"
    DRIVER_AT_PICKUP = "DRIVER_AT_PICKUP"
    PICKED_UP = "PICKED_UP"
    DRIVER_EN_ROUTE_TO_DROPOFF = "DRIVER_EN_ROUTE_TO_DROPOFF"
    DRIVER_AT_DROPOFF = "DRIVER_AT_DROPOFF"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


ACTIVE_DISPATCH_STATUSES = frozenset({
    DispatchStatus.DISPATCH_REQUESTED,
    DispatchStatus.DRIVER_ASSIGNED,
    DispatchStatus.DRIVER_EN_ROUTE_TO_PICKUP,
    DispatchStatus.DRIVER_AT_PICKUP,
    DispatchStatus.PICKED_UP,
    DispatchStatus.DRIVER_EN_ROUTE_TO_DROPOFF,
    DispatchStatus.DRIVER_AT_DROPOFF,
    DispatchStatus.DELIVERED,
})

TERMINAL_FAILURE_STATUSES = frozenset({
    DispatchStatus.FAILED,
    DispatchStatus.CANCELLED,
})


class DispatchState(str, Enum):
    """Terminal-side view of one order's dispatch attempt."""
    IDLE = "idle"
    QUOTING = "quoting"
    DISPATCHING = "dispatching"
    DISPATCHED = "dispatched"
    FAILED = "failed"

    @property
    def in_flight(self) -> bool:
        return self in (DispatchState.QUOTING, DispatchState.DISPATCHING)


class OrderStatus(str, Enum):
    """Kitchen-facing order status."""
    RECEIVED = "RECEIVED"
    IN_PREPARATION = "IN_PREPARATION"
    READY_FOR_PICKUP = "READY_FOR_PICKUP"
    CLOSED = "CLOSED"
    VOIDED = "VOIDED"


# ============================================================================
# ORDER (owned by the order directory, read-only here)
# ============================================================================

@dataclass(frozen=True)
class DeliveryInfo:
    dispatch_status: Optional[DispatchStatus] = None
    delivery_external_id: Optional[str] = None
    delivery_provider: Optional[DeliveryProviderType] = None
    delivery_tracking_url: Optional[str] = None
    estimated_delivery_at: Optional[str] = None
    delivery_fee: Optional[float] = None


@dataclass(frozen=True)
class Order:
    order_id: str
    status: OrderStatus = OrderStatus.RECEIVED
    delivery_info: Optional[DeliveryInfo] = None
    order_number: str = ""
    # Throttled orders sit outside the kitchen working set
    throttle_held: bool = False


# ============================================================================
# GATEWAY PAYLOADS
# ============================================================================

@dataclass(frozen=True)
class Quote:
    """A priced, time-limited delivery offer."""
    provider: DeliveryProviderType
    quote_id: str
    fee: float
    estimated_pickup_at: str
    estimated_delivery_at: str
    expires_at: str


@dataclass(frozen=True)
class DispatchResult:
    delivery_external_id: str
    tracking_url: str
    estimated_delivery_at: str


@dataclass(frozen=True)
class DriverLocation:
    lat: float
    lng: float


@dataclass(frozen=True)
class DriverInfo:
    """Ephemeral courier details from the provider status endpoint."""
    name: Optional[str] = None
    phone: Optional[str] = None
    photo_url: Optional[str] = None
    location: Optional[DriverLocation] = None
    estimated_delivery_at: Optional[str] = None


# ============================================================================
# POLICY
# ============================================================================

@dataclass(frozen=True)
class DeliveryPolicy:
    provider: DeliveryProviderType = DeliveryProviderType.NONE
    auto_dispatch: bool = False


@dataclass(frozen=True)
class ProviderConfigStatus:
    """Which DaaS providers have working credentials on the backend."""
    doordash: bool = False
    uber: bool = False

    def is_configured_for(self, provider: DeliveryProviderType) -> bool:
        if provider is DeliveryProviderType.DOORDASH:
            return self.doordash
        if provider is DeliveryProviderType.UBER:
            return self.uber
        return False


@dataclass(frozen=True)
class DispatchView:
    """Snapshot of the query surface for one order."""
    order_id: str
    state: DispatchState
    error: Optional[str] = None
    quote: Optional[Quote] = None
    is_dispatching: bool = False
    can_dispatch: bool = False
