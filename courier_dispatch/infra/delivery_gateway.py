# courier_dispatch/infra/delivery_gateway.py
"""
Delivery provider gateway backed by the restaurant API.

The terminal never talks to DoorDash or Uber directly: the backend holds the
provider credentials and proxies every call under
``{api_url}/restaurant/{restaurant_id}/delivery/*``. Both providers share one
request shape; only the ``provider`` field of a quote request differs.

Error classification (DeliveryGatewayError.status):
- HTTP error from the backend  → status = HTTP status, message = body detail
  (JSON ``error``/``message`` or plain text) + ``" (<status>)"``
- Network / timeout             → status = 0
- No provider / no restaurant   → ProviderNotConfiguredError

The message is what the operator sees, and what the orchestrator matches to
detect an expired quote ("expired", "gone", "410").

HTTP session lifecycle:
- Uses the shared gateway session from courier_dispatch.infra.http_client.
- Call close_all_sessions() during application shutdown.
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable

import aiohttp

from courier_dispatch.core.delivery.domain import (
    DeliveryProviderType,
    DispatchResult,
    DriverInfo,
    DriverLocation,
    ProviderConfigStatus,
    Quote,
)
from courier_dispatch.core.delivery.errors import DeliveryGatewayError, ProviderNotConfiguredError
from courier_dispatch.infra.http_client import get_gateway_session
from courier_dispatch.infra.logging_config import get_logger

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _build_provider_error(response: aiohttp.ClientResponse, fallback: str) -> DeliveryGatewayError:
    """Turn a non-2xx backend response into an operator-readable error."""
    content_type = response.headers.get("Content-Type", "")
    detail = ""

    if "application/json" in content_type:
        try:
            body = await response.json()
            if isinstance(body, dict):
                detail = body.get("error") or body.get("message") or ""
        except (aiohttp.ContentTypeError, ValueError):
            detail = ""
    else:
        try:
            detail = (await response.text()).strip()
        except (aiohttp.ClientError, UnicodeDecodeError):
            detail = ""

    message = detail or response.reason or fallback
    return DeliveryGatewayError(f"{message} ({response.status})", status=response.status)


def _parse_quote(data: dict[str, Any]) -> Quote:
    return Quote(
        provider=DeliveryProviderType(data["provider"]),
        quote_id=str(data["quoteId"]),
        fee=float(data["fee"]),
        estimated_pickup_at=data.get("estimatedPickupAt", ""),
        estimated_delivery_at=data.get("estimatedDeliveryAt", ""),
        expires_at=data.get("expiresAt", ""),
    )


def _parse_dispatch_result(data: dict[str, Any]) -> DispatchResult:
    return DispatchResult(
        delivery_external_id=str(data["deliveryExternalId"]),
        tracking_url=data.get("trackingUrl", ""),
        estimated_delivery_at=data.get("estimatedDeliveryAt", ""),
    )


def _parse_driver_info(data: dict[str, Any]) -> DriverInfo:
    location = data.get("location")
    return DriverInfo(
        name=data.get("name"),
        phone=data.get("phone"),
        photo_url=data.get("photoUrl"),
        location=DriverLocation(lat=float(location["lat"]), lng=float(location["lng"])) if location else None,
        estimated_delivery_at=data.get("estimatedDeliveryAt"),
    )


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

class BackendDeliveryProvider:
    """One DaaS provider, reached through the restaurant backend."""

    provider_type: DeliveryProviderType

    def __init__(
        self,
        api_base: str,
        *,
        headers: dict[str, str] | None = None,
        session_factory: Callable[[], aiohttp.ClientSession] = get_gateway_session,
    ):
        self.api_base = api_base.rstrip("/")
        self.headers = headers or {}
        self._session_factory = session_factory

    async def request_quote(self, order_id: str) -> Quote:
        data = await self._post(
            "/delivery/quote",
            {"orderId": order_id, "provider": self.provider_type.value},
            fallback="Quote failed",
        )
        return _parse_quote(data)

    async def accept_quote(self, order_id: str, quote_id: str) -> DispatchResult:
        data = await self._post(
            "/delivery/dispatch",
            {"orderId": order_id, "quoteId": quote_id},
            fallback="Dispatch failed",
        )
        return _parse_dispatch_result(data)

    async def cancel_delivery(self, order_id: str, delivery_external_id: str) -> bool:
        session = self._session_factory()
        async with session.post(
            f"{self.api_base}/delivery/cancel",
            json={"orderId": order_id, "deliveryExternalId": delivery_external_id},
            headers=self.headers,
        ) as resp:
            return resp.status < 400

    async def get_status(self, delivery_external_id: str) -> DriverInfo:
        session = self._session_factory()
        try:
            async with session.get(
                f"{self.api_base}/delivery/status/{delivery_external_id}",
                headers=self.headers,
            ) as resp:
                if resp.status >= 400:
                    raise await _build_provider_error(resp, "Status check failed")
                data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise DeliveryGatewayError(f"Status check failed: {exc.__class__.__name__}") from exc
        return _parse_driver_info(data)

    async def _post(self, path: str, payload: dict[str, Any], *, fallback: str) -> dict[str, Any]:
        session = self._session_factory()
        try:
            async with session.post(
                f"{self.api_base}{path}",
                json=payload,
                headers=self.headers,
            ) as resp:
                if resp.status >= 400:
                    raise await _build_provider_error(resp, fallback)
                return await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning(
                f"Delivery backend unreachable: {path} ({exc.__class__.__name__})",
                extra={"provider": self.provider_type.value},
            )
            raise DeliveryGatewayError(f"{fallback}: delivery service unreachable") from exc


class DoorDashDeliveryProvider(BackendDeliveryProvider):
    provider_type = DeliveryProviderType.DOORDASH


class UberDeliveryProvider(BackendDeliveryProvider):
    provider_type = DeliveryProviderType.UBER


_PROVIDER_CLASSES: dict[DeliveryProviderType, type[BackendDeliveryProvider]] = {
    DeliveryProviderType.DOORDASH: DoorDashDeliveryProvider,
    DeliveryProviderType.UBER: UberDeliveryProvider,
}


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------

class HttpDeliveryGateway:
    """
    Selected-provider facade used by the dispatch orchestrator.

    Holds the active provider (switched from the delivery policy) and the
    backend's per-provider credential status.
    """

    def __init__(
        self,
        *,
        api_base: str | None,
        api_token: str | None = None,
        session_factory: Callable[[], aiohttp.ClientSession] = get_gateway_session,
    ):
        self.api_base = api_base.rstrip("/") if api_base else None
        self._headers = {"Authorization": f"Bearer {api_token}"} if api_token else {}
        self._session_factory = session_factory
        self._provider_type = DeliveryProviderType.NONE
        self._provider: BackendDeliveryProvider | None = None
        self._config_status: ProviderConfigStatus | None = None

    @property
    def provider_type(self) -> DeliveryProviderType:
        return self._provider_type

    @property
    def config_status(self) -> ProviderConfigStatus | None:
        return self._config_status

    def set_provider_type(self, provider: DeliveryProviderType) -> None:
        if self._provider_type == provider and self._provider is not None:
            return

        self._provider = None
        self._provider_type = provider

        provider_cls = _PROVIDER_CLASSES.get(provider)
        if provider_cls is not None and self.api_base:
            self._provider = provider_cls(
                self.api_base,
                headers=self._headers,
                session_factory=self._session_factory,
            )
        logger.info(f"Delivery provider set: {provider.value}")

    def is_configured(self) -> bool:
        return self._provider is not None and self._provider_type.is_daas

    def is_provider_configured_for(self, provider: DeliveryProviderType) -> bool:
        if self._config_status is None:
            return False
        return self._config_status.is_configured_for(provider)

    async def load_config_status(self) -> ProviderConfigStatus | None:
        """Refresh credential status; keeps the last known status on failure."""
        if not self.api_base:
            return None

        session = self._session_factory()
        try:
            async with session.get(
                f"{self.api_base}/delivery/config-status",
                headers=self._headers,
            ) as resp:
                if resp.status >= 400:
                    logger.warning(f"Delivery config status unavailable ({resp.status})")
                    return self._config_status
                data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning(f"Delivery config status unavailable: {exc.__class__.__name__}")
            return self._config_status

        self._config_status = ProviderConfigStatus(
            doordash=bool(data.get("doordash")),
            uber=bool(data.get("uber")),
        )
        logger.info(
            f"Delivery config status: doordash={self._config_status.doordash}, "
            f"uber={self._config_status.uber}"
        )
        return self._config_status

    async def ensure_selected_provider_configured(self) -> bool:
        if not self.is_configured():
            return False
        if self.is_provider_configured_for(self._provider_type):
            return True
        status = await self.load_config_status()
        if status is None:
            return False
        return self.is_provider_configured_for(self._provider_type)

    async def request_quote(self, order_id: str) -> Quote:
        return await self._require_provider().request_quote(order_id)

    async def accept_quote(self, order_id: str, quote_id: str) -> DispatchResult:
        return await self._require_provider().accept_quote(order_id, quote_id)

    async def cancel_delivery(self, order_id: str, delivery_external_id: str) -> bool:
        if self._provider is None:
            return False
        try:
            return await self._provider.cancel_delivery(order_id, delivery_external_id)
        except (aiohttp.ClientError, asyncio.TimeoutError):
            logger.warning(f"Delivery cancel failed for order {order_id[:8]}", exc_info=True)
            return False

    async def get_delivery_status(self, delivery_external_id: str) -> DriverInfo | None:
        if self._provider is None:
            return None
        try:
            return await self._provider.get_status(delivery_external_id)
        except DeliveryGatewayError as exc:
            logger.info(f"Delivery status unavailable: {exc}")
            return None

    def _require_provider(self) -> BackendDeliveryProvider:
        if self._provider is None:
            raise ProviderNotConfiguredError()
        return self._provider
