import pytest
from datetime import datetime
from decimal import Decimal

from billing_engine.errors import (
    AlreadyCancelled,
    GatewayTransient,
    InvalidTransition,
    RefundExceedsPayment,
    RefundSourceMissing,
)
from billing_engine.extensions import db
from billing_engine.models import (
    InvoiceStatus,
    PaymentStatus,
    RefundStatus,
    SubscriptionStateChange,
    SubscriptionStatus,
)
from billing_engine.payments import RefundOutcome
from billing_engine.services.cancellation_service import CancelOptions


def _terminal_records(subscription):
    return (
        db.session.query(SubscriptionStateChange)
        .filter_by(subscription_id=subscription.id, to_status="CANCELLED")
        .count()
    )


@pytest.mark.db
def test_cancel_at_period_end_schedules_only(engine, subscription, clock, fake_gateway):
    clock.set(datetime(2025, 1, 20, 12, 0, 0))

    result = engine.cancel(
        subscription.id,
        subscription.tenant_id,
        CancelOptions(cancel_at_period_end=True, reason="switching_provider", actor_id="user-7"),
    )

    assert result.status is SubscriptionStatus.PENDING_CANCELLATION
    assert result.canceled_at == datetime(2025, 1, 31, 9, 0, 0)
    assert result.refund_amount is None
    assert subscription.cancel_at_period_end is True
    assert subscription.canceled_at is None
    assert fake_gateway.refunds == []

    change = engine.history(subscription.id, subscription.tenant_id)[-1]
    assert (change.from_status, change.to_status) == ("ACTIVE", "PENDING_CANCELLATION")
    assert change.reason == "switching_provider"
    assert change.user_id == "user-7"


@pytest.mark.db
def test_cancelling_twice_is_rejected(engine, subscription):
    """The second cancel fails and writes no second terminal record"""
    options = CancelOptions(cancel_at_period_end=False, reason="fraud")
    engine.cancel(subscription.id, subscription.tenant_id, options)

    with pytest.raises(AlreadyCancelled):
        engine.cancel(subscription.id, subscription.tenant_id, options)

    assert subscription.status is SubscriptionStatus.CANCELLED
    assert _terminal_records(subscription) == 1


@pytest.mark.db
@pytest.mark.payment
def test_immediate_cancel_refunds_unused_time(engine, factory, subscription, clock, fake_gateway, recorded_events):
    invoice, payment = factory.paid_invoice(subscription)
    # 31 day period, 10 days left
    clock.set(datetime(2025, 1, 21, 9, 0, 0))

    result = engine.cancel(
        subscription.id,
        subscription.tenant_id,
        CancelOptions(cancel_at_period_end=False, refund_unused_time=True, reason="downsizing"),
    )

    assert result.status is SubscriptionStatus.CANCELLED
    assert result.canceled_at == datetime(2025, 1, 21, 9, 0, 0)
    assert result.refund_amount == Decimal("9.68")
    assert result.refund_status is RefundStatus.SUCCEEDED
    assert result.refund_id == "re_1"
    assert fake_gateway.refunds == [(payment.gateway_txn_id, Decimal("9.68"), "downsizing")]

    db.session.refresh(payment)
    assert payment.refunded_amount == Decimal("9.68")
    assert payment.status is PaymentStatus.PARTIALLY_REFUNDED
    assert payment.refunded_amount <= payment.amount
    assert invoice.meta["refunds"][0]["amount"] == "9.68"

    assert subscription.canceled_at == datetime(2025, 1, 21, 9, 0, 0)
    assert subscription.next_billing_date is None
    change = engine.history(subscription.id, subscription.tenant_id)[-1]
    assert change.reason == "downsizing"
    assert change.meta["refund_amount"] == "9.68"
    assert [name for name, _ in recorded_events] == ["payment.refunded", "subscription.cancelled"]


@pytest.mark.db
@pytest.mark.payment
def test_refund_falls_back_to_manual_when_gateway_fails(engine, factory, subscription, clock, fake_gateway):
    invoice, payment = factory.paid_invoice(subscription)
    clock.set(datetime(2025, 1, 21, 9, 0, 0))
    fake_gateway.refund_result = GatewayTransient("connection reset")

    result = engine.cancel(
        subscription.id,
        subscription.tenant_id,
        CancelOptions(cancel_at_period_end=False, refund_unused_time=True),
    )

    assert result.refund_status is RefundStatus.PENDING_MANUAL
    assert result.refund_id.startswith("manual_")
    assert result.refund_amount == Decimal("9.68")
    db.session.refresh(payment)
    assert payment.refund_status == "pending_manual"
    assert payment.refund_id == result.refund_id
    # nothing was paid out, so the payment is not reported as refunded
    assert payment.refunded_amount == Decimal("0.00")
    assert payment.refunded_at is None
    assert payment.status is PaymentStatus.COMPLETED
    assert payment.pending_refund_amount == Decimal("9.68")
    assert payment.refundable_amount == Decimal("20.32")
    assert invoice.meta["refunds"][0]["status"] == "pending_manual"
    assert subscription.status is SubscriptionStatus.CANCELLED


@pytest.mark.db
@pytest.mark.payment
def test_refund_declined_by_gateway_is_kept_for_manual_processing(engine, factory, subscription, clock, fake_gateway):
    factory.paid_invoice(subscription)
    clock.set(datetime(2025, 1, 21, 9, 0, 0))
    fake_gateway.refund_result = RefundOutcome(status="failed")

    result = engine.cancel(
        subscription.id,
        subscription.tenant_id,
        CancelOptions(cancel_at_period_end=False, refund_unused_time=True),
    )

    assert result.refund_status is RefundStatus.PENDING_MANUAL


@pytest.mark.db
def test_refund_without_completed_payment_fails_explicitly(engine, subscription, clock):
    clock.set(datetime(2025, 1, 21, 9, 0, 0))

    with pytest.raises(RefundSourceMissing):
        engine.cancel(
            subscription.id,
            subscription.tenant_id,
            CancelOptions(cancel_at_period_end=False, refund_unused_time=True),
        )

    assert subscription.status is SubscriptionStatus.ACTIVE
    assert _terminal_records(subscription) == 0


@pytest.mark.db
def test_no_refund_when_nothing_is_left_of_the_period(engine, factory, subscription, fake_gateway):
    factory.paid_invoice(subscription)

    result = engine.cancel(
        subscription.id,
        subscription.tenant_id,
        CancelOptions(cancel_at_period_end=False, refund_unused_time=True),
    )

    assert result.refund_amount is None
    assert fake_gateway.refunds == []


@pytest.mark.db
def test_trial_cancellation_has_nothing_to_refund(engine, factory, tenant, plan, gateway_config, clock):
    subscription = factory.subscription(tenant, plan, status=SubscriptionStatus.TRIALING)
    clock.set(datetime(2025, 1, 21, 9, 0, 0))

    result = engine.cancel(
        subscription.id,
        tenant.id,
        CancelOptions(cancel_at_period_end=False, refund_unused_time=True),
    )

    assert result.status is SubscriptionStatus.CANCELLED
    assert result.refund_amount is None


@pytest.mark.db
def test_immediate_cancel_closes_open_invoices(engine, subscription, fake_gateway):
    fake_gateway.decline()
    renewal = engine.process_renewal(subscription.id, subscription.tenant_id)

    engine.cancel(subscription.id, subscription.tenant_id, CancelOptions(cancel_at_period_end=False))

    invoice = engine.invoices(subscription.id, subscription.tenant_id)[0]
    assert invoice.id == renewal.invoice_id
    assert invoice.status is InvoiceStatus.CANCELLED


@pytest.mark.db
@pytest.mark.payment
def test_refund_bound(engine, factory, subscription, fake_gateway):
    """Refunds above the remaining paid amount are rejected"""
    _, payment = factory.paid_invoice(subscription, amount=Decimal("30.00"))

    with pytest.raises(RefundExceedsPayment):
        engine.refunds.refund_payment(payment, Decimal("30.01"), "requested_by_customer")
    with pytest.raises(RefundExceedsPayment):
        engine.refunds.refund_payment(payment, Decimal("0"), "requested_by_customer")

    engine.refunds.refund_payment(payment, Decimal("10.00"), "requested_by_customer")
    db.session.commit()
    assert payment.status is PaymentStatus.PARTIALLY_REFUNDED

    with pytest.raises(RefundExceedsPayment):
        engine.refunds.refund_payment(payment, Decimal("20.01"), "requested_by_customer")

    engine.refunds.refund_payment(payment, Decimal("20.00"), "requested_by_customer")
    db.session.commit()

    assert payment.refunded_amount == Decimal("30.00")
    assert payment.status is PaymentStatus.REFUNDED
    assert len(payment.invoice.meta["refunds"]) == 2
    assert len(fake_gateway.refunds) == 2


@pytest.mark.db
def test_reactivate_withdraws_scheduled_cancellation(engine, subscription):
    tenant_id = subscription.tenant_id
    engine.cancel(subscription.id, tenant_id, CancelOptions(cancel_at_period_end=True, reason="budget"))

    engine.reactivate(subscription.id, tenant_id, actor_id="user-1")

    assert subscription.status is SubscriptionStatus.ACTIVE
    assert subscription.cancel_at_period_end is False
    assert subscription.cancellation_reason is None
    assert [c.reason for c in engine.history(subscription.id, tenant_id)] == ["budget", "reactivated"]


@pytest.mark.db
def test_reactivate_requires_a_pending_cancellation(engine, subscription):
    with pytest.raises(InvalidTransition):
        engine.reactivate(subscription.id, subscription.tenant_id)


@pytest.mark.db
@pytest.mark.payment
def test_manual_refund_is_held_against_the_bound(engine, factory, subscription, fake_gateway):
    _, payment = factory.paid_invoice(subscription, amount=Decimal("30.00"))
    fake_gateway.refund_result = GatewayTransient("connection reset")

    result = engine.refunds.refund_payment(payment, Decimal("25.00"), "requested_by_customer")
    db.session.commit()

    assert result.refund_status is RefundStatus.PENDING_MANUAL
    assert payment.status is PaymentStatus.COMPLETED
    assert payment.refunded_amount == Decimal("0.00")
    assert payment.pending_refund_amount == Decimal("25.00")
    with pytest.raises(RefundExceedsPayment):
        engine.refunds.refund_payment(payment, Decimal("5.01"), "requested_by_customer")

    fake_gateway.refund_result = None
    engine.refunds.refund_payment(payment, Decimal("5.00"), "requested_by_customer")
    db.session.commit()

    assert payment.refunded_amount == Decimal("5.00")
    assert payment.status is PaymentStatus.PARTIALLY_REFUNDED
    assert payment.refundable_amount == Decimal("0.00")
