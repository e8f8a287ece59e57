import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from billing_engine import notifications
from billing_engine.billing.proration import unused_time_credit
from billing_engine.errors import InvalidTransition
from billing_engine.models import InvoiceStatus, RefundStatus, SubscriptionStatus

logger = logging.getLogger(__name__)

S = SubscriptionStatus


@dataclass
class CancelOptions:
    cancel_at_period_end: bool = True
    reason: Optional[str] = None
    refund_unused_time: bool = False
    actor_id: Optional[str] = None


@dataclass
class CancellationResult:
    subscription_id: str
    status: SubscriptionStatus
    canceled_at: datetime
    refund_amount: Optional[Decimal] = None
    refund_id: Optional[str] = None
    refund_status: Optional[RefundStatus] = None

    def to_dict(self):
        return {
            "subscription_id": self.subscription_id,
            "status": self.status.value,
            "canceled_at": self.canceled_at.isoformat(),
            "refund_amount": str(self.refund_amount) if self.refund_amount is not None else None,
            "refund_id": self.refund_id,
            "refund_status": self.refund_status.value if self.refund_status else None,
        }


class CancellationService:
    def __init__(self, repository, lifecycle, refunds, events, clock):
        self.repository = repository
        self.lifecycle = lifecycle
        self.refunds = refunds
        self.events = events
        self.clock = clock

    def cancel(self, subscription_id, tenant_id, options=None) -> CancellationResult:
        """
        Cancel now or at the end of the current period.

        Period-end cancellation only schedules the change. Immediate
        cancellation may refund the unused part of the period against the
        latest completed payment; a missing payment fails the whole call
        before anything is changed.
        """
        options = options or CancelOptions()
        with self.repository.transaction():
            subscription = self.repository.get_subscription(subscription_id, tenant_id, for_update=True)
            self.lifecycle.ensure_not_cancelled(subscription)

            if options.cancel_at_period_end:
                return self._schedule(subscription, options)
            return self._cancel_now(subscription, options)

    def reactivate(self, subscription_id, tenant_id, actor_id=None):
        """Withdraw a scheduled cancellation or resume a paused subscription."""
        with self.repository.transaction():
            subscription = self.repository.get_subscription(subscription_id, tenant_id, for_update=True)
            self.lifecycle.ensure_not_cancelled(subscription)
            if subscription.status not in (S.PENDING_CANCELLATION, S.PAUSED):
                raise InvalidTransition(
                    "Only pending cancellations and paused subscriptions can be reactivated",
                    subscription_id=subscription.id,
                    status=subscription.status.value,
                )

            self.lifecycle.transition(
                subscription,
                S.ACTIVE,
                reason="reactivated",
                actor_id=actor_id,
                metadata={"previous_reason": subscription.cancellation_reason},
            )
            subscription.cancel_at_period_end = False
            subscription.cancellation_reason = None
            return subscription

    def expire_pending(self, subscription, reason="period_end_cancellation"):
        """Finish a scheduled cancellation once its period is over. Caller commits."""
        now = self.clock.now()
        self.lifecycle.transition(
            subscription,
            S.CANCELLED,
            reason=reason,
            metadata={"period_end": subscription.current_period_end.isoformat()},
        )
        self._close(subscription, now)
        return subscription

    def _schedule(self, subscription, options):
        self.lifecycle.transition(
            subscription,
            S.PENDING_CANCELLATION,
            reason=options.reason or "cancel_at_period_end",
            actor_id=options.actor_id,
            metadata={"cancel_at": subscription.current_period_end.isoformat()},
        )
        subscription.cancel_at_period_end = True
        subscription.cancellation_reason = options.reason

        logger.info(
            "Cancellation scheduled for period end",
            extra={"subscription_id": subscription.id, "tenant_id": subscription.tenant_id},
        )
        return CancellationResult(
            subscription_id=subscription.id,
            status=subscription.status,
            canceled_at=subscription.current_period_end,
        )

    def _cancel_now(self, subscription, options):
        now = self.clock.now()
        refund = None

        if options.refund_unused_time and subscription.status is not S.TRIALING:
            price = subscription.unit_price if subscription.unit_price is not None else subscription.plan.price
            credit = unused_time_credit(
                subscription.current_period_start,
                subscription.current_period_end,
                price,
                now,
            )
            if credit > 0:
                payment = self.refunds.latest_completed_payment(subscription)
                amount = min(credit, payment.refundable_amount)
                if amount > 0:
                    refund = self.refunds.refund_payment(
                        payment,
                        amount,
                        options.reason or "subscription_cancelled",
                    )

        metadata = {"immediate": True}
        if refund is not None:
            metadata.update(refund_amount=str(refund.amount), refund_id=refund.refund_id)

        self.lifecycle.transition(
            subscription,
            S.CANCELLED,
            reason=options.reason or "cancelled",
            actor_id=options.actor_id,
            metadata=metadata,
        )
        subscription.cancellation_reason = options.reason
        self._close(subscription, now)

        return CancellationResult(
            subscription_id=subscription.id,
            status=subscription.status,
            canceled_at=now,
            refund_amount=refund.amount if refund else None,
            refund_id=refund.refund_id if refund else None,
            refund_status=refund.refund_status if refund else None,
        )

    def _close(self, subscription, now):
        subscription.canceled_at = now
        subscription.cancel_at_period_end = False
        subscription.next_billing_date = None
        subscription.updated_at = now

        for invoice in self.repository.open_invoices(subscription):
            invoice.status = InvoiceStatus.CANCELLED
            invoice.updated_at = now

        self.events.emit(
            notifications.SUBSCRIPTION_CANCELLED,
            {
                "subscription_id": subscription.id,
                "tenant_id": subscription.tenant_id,
                "client_id": subscription.client_id,
                "canceled_at": now.isoformat(),
            },
        )
        logger.info(
            "Subscription cancelled",
            extra={"subscription_id": subscription.id, "tenant_id": subscription.tenant_id},
        )
