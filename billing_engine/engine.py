import logging

from flask import current_app

from billing_engine.billing.state_machine import SubscriptionLifecycle
from billing_engine.errors import NotFound
from billing_engine.notifications import BillingEvents
from billing_engine.observability.metrics import MetricsManager
from billing_engine.payments import GatewayManager, default_registry
from billing_engine.repository import BillingRepository
from billing_engine.services.audit_trail import AuditTrail
from billing_engine.services.cancellation_service import CancellationService
from billing_engine.services.dunning_service import DunningService
from billing_engine.services.invoice_number_service import InvoiceNumberService
from billing_engine.services.proration_service import ProrationService
from billing_engine.services.refund_service import RefundService
from billing_engine.services.renewal_service import RenewalService
from billing_engine.utils.clock import SystemClock
from billing_engine.utils.redis_lock import MemoryLockProvider

logger = logging.getLogger(__name__)


class BillingEngine:
    """
    Wires the billing services around one storage session.

    Every collaborator is passed in; nothing reaches for module globals.
    Pass ``db.session`` (a scoped session) to share one engine across
    requests and worker tasks.
    """

    def __init__(self, session, clock=None, events=None, registry=None, locks=None,
                 metrics=None, config=None):
        config = config or {}
        self.clock = clock or SystemClock()
        self.events = events or BillingEvents()
        self.registry = registry or default_registry()
        self.locks = locks or MemoryLockProvider()
        self.metrics = metrics or MetricsManager(enabled=False)

        self.repository = BillingRepository(session)
        self.audit_trail = AuditTrail(self.repository, self.clock)
        self.lifecycle = SubscriptionLifecycle(self.audit_trail, self.clock)
        self.gateways = GatewayManager(
            self.repository,
            self.registry,
            default_timeout=config.get("GATEWAY_TIMEOUT_SECONDS", 10),
        )
        self.invoice_numbers = InvoiceNumberService(
            self.repository,
            self.clock,
            default_prefix=config.get("INVOICE_NUMBER_PREFIX", "INV"),
            pad=config.get("INVOICE_NUMBER_PAD", 6),
        )
        self.dunning = DunningService(
            self.repository,
            self.lifecycle,
            self.events,
            self.clock,
            max_attempts=config.get("DUNNING_MAX_ATTEMPTS", 3),
            unpaid_after=config.get("DUNNING_UNPAID_AFTER", 6),
            retry_interval_hours=config.get("PAYMENT_RETRY_INTERVAL_HOURS", 24),
        )
        self.refunds = RefundService(self.repository, self.gateways, self.events, self.clock)
        self.cancellations = CancellationService(
            self.repository, self.lifecycle, self.refunds, self.events, self.clock
        )
        self.proration = ProrationService(self.repository, self.clock)
        self.renewals = RenewalService(
            self.repository,
            self.lifecycle,
            self.audit_trail,
            self.invoice_numbers,
            self.gateways,
            self.dunning,
            self.cancellations,
            self.events,
            self.clock,
            self.locks,
            self.metrics,
            retry_interval_hours=config.get("PAYMENT_RETRY_INTERVAL_HOURS", 24),
        )

    # -- operations ----------------------------------------------------------

    def process_renewal(self, subscription_id, tenant_id):
        return self.renewals.process_renewal(subscription_id, tenant_id)

    def cancel(self, subscription_id, tenant_id, options=None):
        return self.cancellations.cancel(subscription_id, tenant_id, options)

    def reactivate(self, subscription_id, tenant_id, actor_id=None):
        return self.cancellations.reactivate(subscription_id, tenant_id, actor_id=actor_id)

    def calculate_proration(self, subscription_id, new_plan_id, tenant_id):
        return self.proration.calculate_for_plan_change(subscription_id, new_plan_id, tenant_id)

    def handle_failed_payment(self, subscription_id, attempt_number, tenant_id):
        with self.repository.transaction():
            return self.dunning.handle_failed_payment(subscription_id, attempt_number, tenant_id)

    def next_invoice_number(self, tenant_id):
        if self.repository.get_tenant(tenant_id) is None:
            raise NotFound("Tenant not found", tenant_id=tenant_id)
        with self.repository.transaction():
            return self.invoice_numbers.next_number(tenant_id)

    # -- read models ---------------------------------------------------------

    def history(self, subscription_id, tenant_id):
        self.repository.get_subscription(subscription_id, tenant_id)
        return self.audit_trail.history(subscription_id, tenant_id)

    def invoices(self, subscription_id, tenant_id):
        self.repository.get_subscription(subscription_id, tenant_id)
        return self.repository.invoices_for(subscription_id, tenant_id)

    def payments(self, subscription_id, tenant_id):
        self.repository.get_subscription(subscription_id, tenant_id)
        return self.repository.payments_for(subscription_id, tenant_id)


def get_engine() -> BillingEngine:
    return current_app.extensions["billing_engine"]
