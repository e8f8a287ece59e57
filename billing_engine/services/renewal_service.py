import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from billing_engine import notifications
from billing_engine.billing.intervals import next_period
from billing_engine.billing.state_machine import BILLABLE_STATUSES
from billing_engine.errors import (
    BillingError,
    ErrorKind,
    GatewayDeclined,
    InvalidTransition,
    NoPaymentMethod,
)
from billing_engine.models import (
    Invoice,
    InvoiceStatus,
    InvoiceType,
    Payment,
    PaymentStatus,
    SubscriptionStatus,
)

logger = logging.getLogger(__name__)

S = SubscriptionStatus

# Failures that count as a missed payment and feed dunning
PAYMENT_FAILURES = (
    ErrorKind.NO_PAYMENT_METHOD,
    ErrorKind.GATEWAY_TRANSIENT,
    ErrorKind.GATEWAY_DECLINED,
    ErrorKind.GATEWAY_UNAVAILABLE,
    ErrorKind.GATEWAY_MISCONFIGURED,
)


@dataclass
class RenewalResult:
    subscription_id: str
    success: bool
    invoice_id: Optional[str] = None
    payment_id: Optional[str] = None
    next_billing_date: Optional[datetime] = None
    status: Optional[SubscriptionStatus] = None
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    decline_code: Optional[str] = None
    not_due: bool = False
    cancelled: bool = False

    @property
    def outcome(self) -> str:
        if self.success:
            return "renewed"
        if self.not_due:
            return "not_due"
        if self.cancelled:
            return "cancelled"
        return "failed"

    def to_dict(self):
        return {
            "subscription_id": self.subscription_id,
            "success": self.success,
            "outcome": self.outcome,
            "invoice_id": self.invoice_id,
            "payment_id": self.payment_id,
            "next_billing_date": self.next_billing_date.isoformat() if self.next_billing_date else None,
            "status": self.status.value if self.status else None,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error_message": self.error_message,
            "decline_code": self.decline_code,
        }


class RenewalService:
    """
    Charges a subscription for its next period.

    A renewal runs under a per-subscription lock and commits in two steps:
    the invoice and a PENDING payment first, then the outcome once the
    gateway has answered. A crash in between leaves an open invoice and
    its PENDING payment, which the next run picks up again under the same
    intent; nothing is marked PAID without a confirmed charge. Missing rows and illegal states raise, payment
    failures come back as a ``RenewalResult`` carrying the error kind.
    """

    def __init__(self, repository, lifecycle, audit_trail, numbers, gateways, dunning,
                 cancellations, events, clock, locks, metrics, retry_interval_hours=24):
        self.repository = repository
        self.lifecycle = lifecycle
        self.audit_trail = audit_trail
        self.numbers = numbers
        self.gateways = gateways
        self.dunning = dunning
        self.cancellations = cancellations
        self.events = events
        self.clock = clock
        self.locks = locks
        self.metrics = metrics
        self.retry_interval = timedelta(hours=retry_interval_hours)

    def process_renewal(self, subscription_id, tenant_id) -> RenewalResult:
        with self.locks.lock(f"billing:renewal:{subscription_id}"):
            try:
                result = self._renew(subscription_id, tenant_id)
            except Exception:
                self.repository.rollback()
                raise
        self.metrics.record_renewal(result.outcome)
        return result

    def find_due_subscriptions(self, now=None, limit=100):
        now = now or self.clock.now()
        return self.repository.due_subscriptions(
            now,
            statuses=BILLABLE_STATUSES + (S.PENDING_CANCELLATION,),
            retry_cutoff=now - self.retry_interval,
            limit=limit,
        )

    def convert_trial(self, subscription_id, tenant_id, actor_id=None):
        with self.repository.transaction():
            subscription = self.repository.get_subscription(subscription_id, tenant_id, for_update=True)
            if subscription.status is not S.TRIALING:
                raise InvalidTransition(
                    "Only trialing subscriptions can be converted",
                    subscription_id=subscription.id,
                    status=subscription.status.value,
                )
            self.lifecycle.transition(subscription, S.ACTIVE, reason="trial_converted", actor_id=actor_id)
            subscription.trial_end = min(subscription.trial_end or self.clock.now(), self.clock.now())
            return subscription

    # -- steps --------------------------------------------------------------

    def _renew(self, subscription_id, tenant_id):
        now = self.clock.now()
        subscription = self.repository.get_subscription(subscription_id, tenant_id, for_update=True)
        plan = self.repository.get_plan(subscription.plan_id, tenant_id)
        self.lifecycle.ensure_not_cancelled(subscription)

        observed = subscription.next_billing_date
        if observed is None or now < observed:
            return RenewalResult(
                subscription_id=subscription.id,
                success=False,
                not_due=True,
                next_billing_date=observed,
                status=subscription.status,
            )

        if subscription.status is S.PENDING_CANCELLATION:
            self.cancellations.expire_pending(subscription)
            self.repository.commit()
            return RenewalResult(
                subscription_id=subscription_id,
                success=False,
                cancelled=True,
                status=S.CANCELLED,
            )

        if subscription.status not in BILLABLE_STATUSES:
            raise InvalidTransition(
                f"Subscriptions in {subscription.status.value} are not renewed",
                subscription_id=subscription.id,
                status=subscription.status.value,
            )

        period_start, period_end = next_period(
            subscription.current_period_end,
            plan.interval,
            plan.interval_count,
            anchor=subscription.billing_cycle_anchor,
        )
        invoice, created = self._invoice_for(subscription, plan, period_start, period_end, now)

        # An attempt that stopped mid-charge leaves its payment PENDING. The
        # payment id keys the gateway intent, so the next attempt reuses it
        payment = self.repository.pending_payment(invoice)
        resumed = payment is not None
        gateway = None
        try:
            if not subscription.payment_method_id:
                raise NoPaymentMethod(
                    "Subscription has no stored payment method",
                    subscription_id=subscription.id,
                )
            if resumed:
                gateway = self.gateways.gateway_for(tenant_id, payment.gateway)
                payment.retry_count = subscription.failed_payment_attempts
                payment.updated_at = now
                logger.info(
                    "Resuming pending payment",
                    extra={"subscription_id": subscription.id, "payment_id": payment.id},
                )
            else:
                gateway = self.gateways.select_gateway(
                    tenant_id,
                    invoice.total,
                    invoice.currency,
                    customer_ref=subscription.client_id,
                    is_recurring=True,
                )
                payment = self.repository.add(
                    Payment(
                        tenant_id=tenant_id,
                        invoice_id=invoice.id,
                        amount=invoice.total,
                        currency=invoice.currency,
                        status=PaymentStatus.PENDING,
                        gateway=gateway.name,
                        retry_count=subscription.failed_payment_attempts,
                        created_at=now,
                        updated_at=now,
                    )
                )
        except BillingError as exc:
            self.repository.commit()
            self._announce_invoice(invoice, created)
            return self._fail(subscription, invoice, payment, exc, now)

        # Invoice, counter and PENDING payment survive whatever the gateway does
        self.repository.commit()
        self._announce_invoice(invoice, created)

        try:
            intent_id = gateway.create_payment_intent(
                invoice.total,
                invoice.currency,
                subscription.client_id,
                {
                    "payment_id": payment.id,
                    "invoice_id": invoice.id,
                    "subscription_id": subscription.id,
                    "tenant_id": tenant_id,
                },
            )
            payment.gateway_id = intent_id
            self.repository.commit()
            outcome = gateway.find_settled_payment(intent_id) if resumed else None
            if outcome is None:
                outcome = gateway.confirm_payment(intent_id, subscription.payment_method_id)
        except BillingError as exc:
            self.metrics.record_payment_attempt(gateway.name, "error")
            return self._fail(subscription, invoice, payment, exc, now)

        self.metrics.record_payment_attempt(gateway.name, outcome.status)
        payment.gateway_response = outcome.raw
        if not outcome.succeeded:
            declined = GatewayDeclined(
                outcome.message or "Payment declined",
                decline_code=outcome.decline_code,
                subscription_id=subscription.id,
            )
            return self._fail(subscription, invoice, payment, declined, now)

        return self._succeed(subscription, invoice, payment, outcome, observed, period_start, period_end, now)

    def _invoice_for(self, subscription, plan, period_start, period_end, now):
        invoice = self.repository.open_renewal_invoice(subscription, period_start)
        if invoice is not None:
            logger.info(
                "Reusing open renewal invoice",
                extra={"subscription_id": subscription.id, "invoice_id": invoice.id},
            )
            return invoice, False

        price = subscription.unit_price if subscription.unit_price is not None else plan.price
        invoice = Invoice.build(
            subtotal=price,
            tenant_id=subscription.tenant_id,
            client_id=subscription.client_id,
            subscription_id=subscription.id,
            invoice_number=self.numbers.next_number(subscription.tenant_id),
            currency=subscription.currency or plan.currency,
            status=InvoiceStatus.PENDING,
            invoice_type=InvoiceType.RECURRING,
            period_start=period_start,
            period_end=period_end,
            due_date=now,
            meta={"plan_id": plan.id, "plan_name": plan.name},
            created_at=now,
            updated_at=now,
        )
        return self.repository.add(invoice), True

    def _succeed(self, subscription, invoice, payment, outcome, observed, period_start, period_end, now):
        advanced = self.repository.advance_period(
            subscription,
            observed,
            period_start=period_start,
            period_end=period_end,
            next_billing_date=period_end,
            now=now,
        )
        if not advanced:
            # Money was taken but another run already moved the period
            logger.error(
                "Period already advanced after a confirmed charge; payment needs review",
                extra={"subscription_id": subscription.id, "payment_id": payment.id},
            )

        invoice.status = InvoiceStatus.PAID
        invoice.paid_at = now
        invoice.updated_at = now
        payment.status = PaymentStatus.COMPLETED
        payment.gateway_txn_id = outcome.gateway_txn_id
        payment.updated_at = now
        subscription.last_payment_attempt = now

        self.lifecycle.transition(
            subscription,
            S.ACTIVE,
            reason="successful_renewal",
            metadata={
                "invoice_id": invoice.id,
                "payment_id": payment.id,
                "period_start": period_start,
                "period_end": period_end,
            },
        )
        self.repository.commit()

        self.events.emit(
            notifications.INVOICE_PAID,
            {
                "invoice_id": invoice.id,
                "invoice_number": invoice.invoice_number,
                "subscription_id": subscription.id,
                "tenant_id": subscription.tenant_id,
                "total": str(invoice.total),
                "currency": invoice.currency,
            },
        )
        logger.info(
            "Subscription renewed",
            extra={
                "subscription_id": subscription.id,
                "tenant_id": subscription.tenant_id,
                "invoice_id": invoice.id,
                "next_billing_date": subscription.next_billing_date.isoformat(),
            },
        )
        return RenewalResult(
            subscription_id=subscription.id,
            success=True,
            invoice_id=invoice.id,
            payment_id=payment.id,
            next_billing_date=subscription.next_billing_date,
            status=subscription.status,
        )

    def _fail(self, subscription, invoice, payment, error, now):
        kind = error.kind if error.kind in PAYMENT_FAILURES else ErrorKind.GATEWAY_UNAVAILABLE
        decline_code = getattr(error, "decline_code", None)
        attempt = subscription.failed_payment_attempts + 1

        if payment is not None:
            # the charge may still land after a timeout; keep it for the next attempt
            in_doubt = kind is ErrorKind.GATEWAY_TRANSIENT and payment.gateway_id is not None
            payment.status = PaymentStatus.PENDING if in_doubt else PaymentStatus.FAILED
            payment.error_code = decline_code or kind.value
            payment.error_message = error.message
            payment.retryable = kind.retryable
            payment.updated_at = now

        self.audit_trail.record(
            subscription,
            from_status=subscription.status,
            to_status=subscription.status,
            reason="renewal_failed",
            metadata={
                "invoice_id": invoice.id,
                "payment_id": payment.id if payment else None,
                "error_kind": kind.value,
                "attempt": attempt,
            },
        )
        outcome = self.dunning.handle_failed_payment(subscription.id, attempt, subscription.tenant_id, kind)
        if payment is not None:
            payment.next_retry_at = outcome.next_attempt_at
        self.repository.commit()

        self.events.emit(
            notifications.PAYMENT_FAILED,
            {
                "subscription_id": subscription.id,
                "tenant_id": subscription.tenant_id,
                "invoice_id": invoice.id,
                "payment_id": payment.id if payment else None,
                "error_kind": kind.value,
                "attempt": attempt,
            },
        )
        logger.warning(
            "Renewal payment failed",
            extra={
                "subscription_id": subscription.id,
                "tenant_id": subscription.tenant_id,
                "error_kind": kind.value,
                "attempt": attempt,
            },
        )
        return RenewalResult(
            subscription_id=subscription.id,
            success=False,
            invoice_id=invoice.id,
            payment_id=payment.id if payment else None,
            next_billing_date=subscription.next_billing_date,
            status=subscription.status,
            error_kind=kind,
            error_message=error.message,
            decline_code=decline_code,
        )

    def _announce_invoice(self, invoice, created):
        if not created:
            return
        self.events.emit(
            notifications.INVOICE_CREATED,
            {
                "invoice_id": invoice.id,
                "invoice_number": invoice.invoice_number,
                "subscription_id": invoice.subscription_id,
                "tenant_id": invoice.tenant_id,
                "total": str(invoice.total),
                "currency": invoice.currency,
            },
        )
