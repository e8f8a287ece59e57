import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from billing_engine import notifications
from billing_engine.models import InvoiceStatus, SubscriptionStatus

logger = logging.getLogger(__name__)

S = SubscriptionStatus


@dataclass
class DunningOutcome:
    attempt_number: int
    status: SubscriptionStatus
    next_attempt_at: Optional[datetime]
    escalated: bool = False


class DunningService:
    """
    Counts failed renewal charges and escalates the subscription.

    Nothing here waits: the next attempt is picked up by the renewal sweep
    once ``PAYMENT_RETRY_INTERVAL_HOURS`` have passed since
    ``last_payment_attempt``. The caller owns the commit.
    """

    def __init__(self, repository, lifecycle, events, clock,
                 max_attempts=3, unpaid_after=6, retry_interval_hours=24):
        self.repository = repository
        self.lifecycle = lifecycle
        self.events = events
        self.clock = clock
        self.max_attempts = max_attempts
        self.unpaid_after = unpaid_after
        self.retry_interval = timedelta(hours=retry_interval_hours)

    def handle_failed_payment(self, subscription_id, attempt_number, tenant_id, error_kind=None):
        if attempt_number < 1:
            raise ValueError("attempt_number starts at 1")

        subscription = self.repository.get_subscription(subscription_id, tenant_id)
        self.lifecycle.ensure_not_cancelled(subscription)

        now = self.clock.now()
        subscription.failed_payment_attempts = attempt_number
        subscription.last_payment_attempt = now
        subscription.updated_at = now

        context = {
            "subscription_id": subscription.id,
            "tenant_id": tenant_id,
            "attempt": attempt_number,
            "error_kind": getattr(error_kind, "value", error_kind),
        }
        escalated = False

        if attempt_number >= self.max_attempts and subscription.status in (S.ACTIVE, S.TRIALING):
            self._mark_past_due(subscription, attempt_number, now)
            escalated = True

        if attempt_number >= self.unpaid_after and subscription.status is S.PAST_DUE:
            self.lifecycle.transition(
                subscription,
                S.UNPAID,
                reason="dunning_exhausted",
                metadata={"attempt": attempt_number},
            )
            logger.warning("Subscription marked unpaid", extra=context)
            escalated = True

        next_attempt_at = None
        if not escalated:
            next_attempt_at = now + self.retry_interval
            self.events.emit(
                notifications.PAYMENT_RETRY_SCHEDULED,
                {**context, "next_attempt_at": next_attempt_at.isoformat()},
            )
            logger.info("Payment retry scheduled", extra=context)

        return DunningOutcome(
            attempt_number=attempt_number,
            status=subscription.status,
            next_attempt_at=next_attempt_at,
            escalated=escalated,
        )

    def _mark_past_due(self, subscription, attempt_number, now):
        self.lifecycle.transition(
            subscription,
            S.PAST_DUE,
            reason="max_payment_attempts_reached",
            metadata={"attempt": attempt_number},
        )
        subscription.past_due_at = now

        for invoice in self.repository.open_invoices(subscription):
            if invoice.status is InvoiceStatus.PENDING:
                invoice.status = InvoiceStatus.OVERDUE
                invoice.updated_at = now
                self.events.emit(
                    notifications.INVOICE_OVERDUE,
                    {
                        "invoice_id": invoice.id,
                        "invoice_number": invoice.invoice_number,
                        "subscription_id": subscription.id,
                        "tenant_id": subscription.tenant_id,
                        "total": str(invoice.total),
                    },
                )

        self.events.emit(
            notifications.SUBSCRIPTION_PAST_DUE,
            {
                "subscription_id": subscription.id,
                "tenant_id": subscription.tenant_id,
                "client_id": subscription.client_id,
                "attempt": attempt_number,
            },
        )
        logger.warning(
            "Subscription moved to past due",
            extra={"subscription_id": subscription.id, "tenant_id": subscription.tenant_id},
        )
