# courier_dispatch/core/delivery/__init__.py
"""
Core delivery dispatch -- provider-agnostic domain logic.

This package contains the domain models, the ports the orchestrator talks
to (gateway, order directory, policy source), the per-order runtime store,
backend/local reconciliation, and the DispatchOrchestrator itself.

Canonical imports:
    from courier_dispatch.core.delivery import DispatchOrchestrator
    from courier_dispatch.core.delivery.domain import Order, DeliveryInfo
    from courier_dispatch.core.delivery.ports import DeliveryGateway
"""
from courier_dispatch.core.delivery.domain import (  # noqa: F401
    DeliveryInfo,
    DeliveryPolicy,
    DeliveryProviderType,
    DispatchResult,
    DispatchState,
    DispatchStatus,
    DispatchView,
    Order,
    OrderStatus,
    ProviderConfigStatus,
    Quote,
)
from courier_dispatch.core.delivery.errors import (  # noqa: F401
    DeliveryError,
    DeliveryGatewayError,
    ProviderNotConfiguredError,
    is_quote_expired_error,
)
from courier_dispatch.core.delivery.ports import (  # noqa: F401
    DeliveryGateway,
    OrderDirectory,
    PolicySource,
)
from courier_dispatch.core.delivery.reconciliation import (  # noqa: F401
    backend_dispatch_state,
    has_active_dispatch,
    merge_dispatch_state,
)
from courier_dispatch.core.delivery.runtime_state import DispatchRuntimeState  # noqa: F401
from courier_dispatch.core.delivery.orchestrator import DispatchOrchestrator  # noqa: F401
