# courier_dispatch/transport/schemas.py
from pydantic import BaseModel, Field

from courier_dispatch.core.delivery.domain import (
    DeliveryPolicy,
    DeliveryProviderType,
    DispatchState,
    DispatchView,
    DriverInfo,
    OrderStatus,
    Quote,
)


class QuoteOut(BaseModel):
    provider: DeliveryProviderType
    quote_id: str
    fee: float
    estimated_pickup_at: str
    estimated_delivery_at: str
    expires_at: str

    @classmethod
    def from_domain(cls, quote: Quote) -> "QuoteOut":
        return cls(
            provider=quote.provider,
            quote_id=quote.quote_id,
            fee=quote.fee,
            estimated_pickup_at=quote.estimated_pickup_at,
            estimated_delivery_at=quote.estimated_delivery_at,
            expires_at=quote.expires_at,
        )


class DispatchOut(BaseModel):
    order_id: str
    state: DispatchState
    error: str | None = None
    quote: QuoteOut | None = None
    is_dispatching: bool
    can_dispatch: bool

    @classmethod
    def from_view(cls, view: DispatchView) -> "DispatchOut":
        return cls(
            order_id=view.order_id,
            state=view.state,
            error=view.error,
            quote=QuoteOut.from_domain(view.quote) if view.quote else None,
            is_dispatching=view.is_dispatching,
            can_dispatch=view.can_dispatch,
        )


class DispatchAcceptedOut(BaseModel):
    order_id: str
    accepted: bool = True


class PolicyIn(BaseModel):
    provider: DeliveryProviderType | None = None
    auto_dispatch: bool | None = None


class PolicyOut(BaseModel):
    provider: DeliveryProviderType
    auto_dispatch: bool
    provider_ready: bool

    @classmethod
    def from_domain(cls, policy: DeliveryPolicy, *, provider_ready: bool) -> "PolicyOut":
        return cls(
            provider=policy.provider,
            auto_dispatch=policy.auto_dispatch,
            provider_ready=provider_ready,
        )


class OrderStatusEventIn(BaseModel):
    order_id: str = Field(min_length=1, max_length=128)
    status: OrderStatus


class DriverLocationOut(BaseModel):
    lat: float
    lng: float


class DriverOut(BaseModel):
    order_id: str
    delivery_external_id: str
    name: str | None = None
    phone: str | None = None
    photo_url: str | None = None
    location: DriverLocationOut | None = None
    estimated_delivery_at: str | None = None

    @classmethod
    def from_domain(cls, order_id: str, delivery_external_id: str, info: DriverInfo) -> "DriverOut":
        location = None
        if info.location is not None:
            location = DriverLocationOut(lat=info.location.lat, lng=info.location.lng)
        return cls(
            order_id=order_id,
            delivery_external_id=delivery_external_id,
            name=info.name,
            phone=info.phone,
            photo_url=info.photo_url,
            location=location,
            estimated_delivery_at=info.estimated_delivery_at,
        )


class DeliveryCancelOut(BaseModel):
    order_id: str
    cancelled: bool
