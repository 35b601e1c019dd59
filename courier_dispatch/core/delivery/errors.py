"""
Typed errors for the delivery dispatch layer.

The gateway raises ``DeliveryGatewayError`` for every provider-side failure.
Its message is the human-readable text shown to the operator, and the
orchestrator inspects it to recognise expired quotes.
"""
from __future__ import annotations

import re

# Provider error text is the only signal for an expired quote. If the
# backend ever changes this wording, the retry silently stops firing.
QUOTE_EXPIRED_PATTERN = re.compile(r"expired|gone|410", re.IGNORECASE)


class DeliveryError(Exception):
    """Base class for all delivery dispatch errors."""

    def __init__(self, detail: str = "Delivery error"):
        self.detail = detail
        super().__init__(detail)


class DeliveryGatewayError(DeliveryError):
    """Provider call failed.

    Attributes:
        status: HTTP status code (0 for connection-level errors).
    """

    def __init__(self, detail: str, *, status: int = 0):
        self.status = status
        super().__init__(detail)


class ProviderNotConfiguredError(DeliveryGatewayError):
    """No DaaS provider selected, or no restaurant context for the call."""

    def __init__(self, detail: str = "Delivery provider not configured"):
        super().__init__(detail)


def is_quote_expired_error(message: str | None) -> bool:
    if not message:
        return False
    return QUOTE_EXPIRED_PATTERN.search(message) is not None
