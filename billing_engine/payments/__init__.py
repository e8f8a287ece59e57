from billing_engine.payments.base import (
    GatewayCapabilities,
    PaymentGateway,
    PaymentOutcome,
    RefundOutcome,
)
from billing_engine.payments.manager import GatewayManager
from billing_engine.payments.registry import GatewayRegistry, default_registry
from billing_engine.payments.settings import PaystackSettings, StripeSettings

__all__ = [
    "GatewayCapabilities",
    "GatewayManager",
    "GatewayRegistry",
    "PaymentGateway",
    "PaymentOutcome",
    "PaystackSettings",
    "RefundOutcome",
    "StripeSettings",
    "default_registry",
]
