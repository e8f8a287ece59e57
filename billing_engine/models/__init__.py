from billing_engine.models.gateway_config import PaymentGatewayConfig
from billing_engine.models.invoice import Invoice, InvoiceStatus, InvoiceType, OPEN_INVOICE_STATUSES
from billing_engine.models.invoice_counter import InvoiceCounter
from billing_engine.models.payment import Payment, PaymentStatus, RefundStatus
from billing_engine.models.plan import BillingInterval, Plan
from billing_engine.models.subscription import Subscription, SubscriptionStatus
from billing_engine.models.subscription_state_change import AppendOnlyViolation, SubscriptionStateChange
from billing_engine.models.tenant import Tenant

__all__ = [
    "AppendOnlyViolation",
    "BillingInterval",
    "Invoice",
    "InvoiceCounter",
    "InvoiceStatus",
    "InvoiceType",
    "OPEN_INVOICE_STATUSES",
    "Payment",
    "PaymentGatewayConfig",
    "PaymentStatus",
    "Plan",
    "RefundStatus",
    "Subscription",
    "SubscriptionStateChange",
    "SubscriptionStatus",
    "Tenant",
]
