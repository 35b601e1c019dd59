# courier_dispatch/infra/policy_store.py
"""Restaurant delivery policy (selected provider + auto-dispatch flag)."""
from __future__ import annotations

from dataclasses import replace
from typing import Callable, Optional

from courier_dispatch.config import Settings
from courier_dispatch.core.delivery.domain import DeliveryPolicy, DeliveryProviderType
from courier_dispatch.infra.logging_config import get_logger

logger = get_logger(__name__)

PolicyCallback = Callable[[DeliveryPolicy, DeliveryPolicy], None]


class InMemoryPolicyStore:
    def __init__(self, policy: DeliveryPolicy | None = None):
        self._policy = policy or DeliveryPolicy()
        self._subscribers: list[PolicyCallback] = []

    @classmethod
    def from_settings(cls, settings: Settings) -> "InMemoryPolicyStore":
        return cls(DeliveryPolicy(
            provider=DeliveryProviderType(settings.delivery_provider),
            auto_dispatch=settings.auto_dispatch,
        ))

    def current(self) -> DeliveryPolicy:
        return self._policy

    def update(
        self,
        *,
        provider: Optional[DeliveryProviderType] = None,
        auto_dispatch: Optional[bool] = None,
    ) -> DeliveryPolicy:
        previous = self._policy
        changes = {}
        if provider is not None:
            changes["provider"] = provider
        if auto_dispatch is not None:
            changes["auto_dispatch"] = auto_dispatch
        current = replace(previous, **changes)
        if current == previous:
            return current

        self._policy = current
        logger.info(
            f"Delivery policy updated: provider={current.provider.value}, "
            f"auto_dispatch={current.auto_dispatch}"
        )
        for callback in list(self._subscribers):
            try:
                callback(previous, current)
            except Exception:
                logger.error("Delivery policy subscriber failed", exc_info=True)
        return current

    def subscribe(self, callback: PolicyCallback) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe
