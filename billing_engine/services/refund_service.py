import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from billing_engine import notifications
from billing_engine.billing.proration import round_money
from billing_engine.errors import BillingError, RefundExceedsPayment, RefundSourceMissing
from billing_engine.models import PaymentStatus, RefundStatus

logger = logging.getLogger(__name__)


@dataclass
class RefundResult:
    payment_id: str
    amount: Decimal
    refund_id: str
    refund_status: RefundStatus

    def to_dict(self):
        return {
            "payment_id": self.payment_id,
            "amount": str(self.amount),
            "refund_id": self.refund_id,
            "refund_status": self.refund_status.value,
        }


class RefundService:
    """
    Refunds against the gateway that took the original payment.

    When the gateway cannot be reached or refuses, the refund is kept as
    ``pending_manual`` so an operator can settle it; the request is never
    dropped. A manual refund is held in ``pending_refund_amount`` and does
    not count as refunded. The caller owns the commit.
    """

    def __init__(self, repository, gateway_manager, events, clock):
        self.repository = repository
        self.gateway_manager = gateway_manager
        self.events = events
        self.clock = clock

    def latest_completed_payment(self, subscription):
        payment = self.repository.latest_completed_payment(subscription)
        if payment is None:
            raise RefundSourceMissing(
                "No completed payment to refund",
                subscription_id=subscription.id,
                tenant_id=subscription.tenant_id,
            )
        return payment

    def refund_payment(self, payment, amount, reason) -> RefundResult:
        amount = round_money(amount)
        refundable = payment.refundable_amount
        if amount <= 0 or amount > refundable:
            raise RefundExceedsPayment(
                "Refund must be positive and at most the refundable amount",
                payment_id=payment.id,
                requested=amount,
                refundable=refundable,
            )

        now = self.clock.now()
        refund_id, refund_status = self._call_gateway(payment, amount, reason)

        payment.refund_id = refund_id
        payment.refund_status = refund_status.value
        payment.refund_reason = reason
        payment.updated_at = now
        if refund_status is RefundStatus.PENDING_MANUAL:
            # no money has moved; the payment keeps its status until an operator pays out
            payment.pending_refund_amount = Decimal(payment.pending_refund_amount or 0) + amount
        else:
            payment.refunded_amount = Decimal(payment.refunded_amount or 0) + amount
            payment.refunded_at = now
            if Decimal(payment.refunded_amount) >= Decimal(payment.amount):
                payment.status = PaymentStatus.REFUNDED
            else:
                payment.status = PaymentStatus.PARTIALLY_REFUNDED

        invoice = payment.invoice
        if invoice is not None:
            refunds = list((invoice.meta or {}).get("refunds", []))
            refunds.append({
                "payment_id": payment.id,
                "refund_id": refund_id,
                "amount": str(amount),
                "status": refund_status.value,
                "at": now.isoformat(),
            })
            # JSON columns only notice reassignment
            invoice.meta = {**(invoice.meta or {}), "refunds": refunds}

        self.events.emit(
            notifications.PAYMENT_REFUNDED,
            {
                "payment_id": payment.id,
                "tenant_id": payment.tenant_id,
                "amount": str(amount),
                "refund_id": refund_id,
                "refund_status": refund_status.value,
            },
        )
        return RefundResult(
            payment_id=payment.id,
            amount=amount,
            refund_id=refund_id,
            refund_status=refund_status,
        )

    def _call_gateway(self, payment, amount, reason):
        gateway_ref = payment.gateway_txn_id or payment.gateway_id
        failure: Optional[str] = None

        if not gateway_ref:
            failure = "payment has no gateway reference"
        else:
            try:
                gateway = self.gateway_manager.gateway_for(payment.tenant_id, payment.gateway)
                if not gateway.capabilities.supports_refunds:
                    failure = f"{gateway.name} does not support refunds"
                elif amount < payment.amount and not gateway.capabilities.supports_partial_refunds:
                    failure = f"{gateway.name} does not support partial refunds"
                else:
                    outcome = gateway.refund(gateway_ref, amount, reason, currency=payment.currency)
                    if outcome.succeeded:
                        return outcome.refund_id, RefundStatus.SUCCEEDED
                    if outcome.status == "pending" and outcome.refund_id:
                        return outcome.refund_id, RefundStatus.PENDING
                    failure = f"gateway returned {outcome.status}"
            except BillingError as exc:
                failure = exc.message

        logger.warning(
            "Refund needs manual processing",
            extra={"payment_id": payment.id, "tenant_id": payment.tenant_id, "reason": failure},
        )
        return f"manual_{uuid.uuid4()}", RefundStatus.PENDING_MANUAL
