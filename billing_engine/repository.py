from contextlib import contextmanager

from sqlalchemy import or_, select, update

from billing_engine.errors import NotFound
from billing_engine.models import (
    OPEN_INVOICE_STATUSES,
    Invoice,
    InvoiceCounter,
    InvoiceType,
    Payment,
    PaymentGatewayConfig,
    PaymentStatus,
    Plan,
    Subscription,
    SubscriptionStateChange,
    Tenant,
)


class BillingRepository:
    """
    Storage port for the billing engine.

    Wraps one SQLAlchemy session. Services never build queries themselves;
    they ask the repository, which keeps every lookup tenant-scoped.
    """

    def __init__(self, session):
        self.session = session

    # -- unit of work -----------------------------------------------------

    def add(self, instance):
        self.session.add(instance)
        self.session.flush()
        return instance

    def commit(self):
        self.session.commit()

    def rollback(self):
        self.session.rollback()

    @contextmanager
    def savepoint(self):
        with self.session.begin_nested():
            yield

    @contextmanager
    def transaction(self):
        """Commit on success, roll back and re-raise on any error."""
        try:
            yield
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    # -- lookups ----------------------------------------------------------

    def get_tenant(self, tenant_id):
        return self.session.get(Tenant, tenant_id)

    def subscription_query(self, subscription_id, tenant_id, for_update=False):
        stmt = select(Subscription).where(
            Subscription.id == subscription_id,
            Subscription.tenant_id == tenant_id,
        )
        if for_update:
            # plan is joined eagerly; only the subscription row may be locked
            stmt = stmt.with_for_update(of=Subscription)
        return stmt

    def get_subscription(self, subscription_id, tenant_id, for_update=False):
        stmt = self.subscription_query(subscription_id, tenant_id, for_update=for_update)
        subscription = self.session.execute(stmt).unique().scalar_one_or_none()
        if subscription is None:
            raise NotFound(
                "Subscription not found",
                subscription_id=subscription_id,
                tenant_id=tenant_id,
            )
        return subscription

    def get_plan(self, plan_id, tenant_id):
        plan = self.session.execute(
            select(Plan).where(Plan.id == plan_id, Plan.tenant_id == tenant_id)
        ).scalar_one_or_none()
        if plan is None:
            raise NotFound("Plan not found", plan_id=plan_id, tenant_id=tenant_id)
        return plan

    def get_payment(self, payment_id, tenant_id):
        payment = self.session.execute(
            select(Payment).where(Payment.id == payment_id, Payment.tenant_id == tenant_id)
        ).scalar_one_or_none()
        if payment is None:
            raise NotFound("Payment not found", payment_id=payment_id, tenant_id=tenant_id)
        return payment

    def open_renewal_invoice(self, subscription, period_start):
        """An unpaid recurring invoice already issued for this period, if any."""
        return self.session.execute(
            select(Invoice)
            .where(
                Invoice.subscription_id == subscription.id,
                Invoice.tenant_id == subscription.tenant_id,
                Invoice.invoice_type == InvoiceType.RECURRING,
                Invoice.period_start == period_start,
                Invoice.status.in_(OPEN_INVOICE_STATUSES),
            )
            .order_by(Invoice.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    def pending_payment(self, invoice):
        """The charge left PENDING on ``invoice`` by an interrupted attempt, if any."""
        return self.session.execute(
            select(Payment)
            .where(
                Payment.invoice_id == invoice.id,
                Payment.tenant_id == invoice.tenant_id,
                Payment.status == PaymentStatus.PENDING,
            )
            .order_by(Payment.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    def open_invoices(self, subscription):
        return self.session.execute(
            select(Invoice).where(
                Invoice.subscription_id == subscription.id,
                Invoice.tenant_id == subscription.tenant_id,
                Invoice.status.in_(OPEN_INVOICE_STATUSES),
            )
        ).scalars().all()

    def latest_completed_payment(self, subscription):
        return self.session.execute(
            select(Payment)
            .join(Invoice, Payment.invoice_id == Invoice.id)
            .where(
                Invoice.subscription_id == subscription.id,
                Payment.tenant_id == subscription.tenant_id,
                Payment.status.in_((PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED)),
            )
            .order_by(Payment.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    def gateway_configs(self, tenant_id):
        return self.session.execute(
            select(PaymentGatewayConfig)
            .where(
                PaymentGatewayConfig.tenant_id == tenant_id,
                PaymentGatewayConfig.is_active.is_(True),
            )
            .order_by(PaymentGatewayConfig.priority.desc(), PaymentGatewayConfig.gateway_name)
        ).scalars().all()

    def gateway_config(self, tenant_id, gateway_name):
        return self.session.execute(
            select(PaymentGatewayConfig).where(
                PaymentGatewayConfig.tenant_id == tenant_id,
                PaymentGatewayConfig.gateway_name == gateway_name,
            )
        ).scalar_one_or_none()

    # -- writes with concurrency guards ------------------------------------

    def advance_period(self, subscription, observed_next_billing_date, *, period_start, period_end,
                       next_billing_date, now):
        """
        Compare-and-swap the billing period forward.

        Only succeeds if nobody advanced the row since ``observed_next_billing_date``
        was read, so one cycle can never be renewed twice.
        """
        result = self.session.execute(
            update(Subscription)
            .where(
                Subscription.id == subscription.id,
                Subscription.tenant_id == subscription.tenant_id,
                Subscription.next_billing_date == observed_next_billing_date,
            )
            .values(
                current_period_start=period_start,
                current_period_end=period_end,
                next_billing_date=next_billing_date,
                failed_payment_attempts=0,
                past_due_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        self.session.refresh(subscription)
        return True

    def increment_invoice_counter(self, tenant_id, year, now):
        """Atomically bump the counter row. Returns (last_number, prefix) or None if absent."""
        return self.session.execute(
            update(InvoiceCounter)
            .where(InvoiceCounter.tenant_id == tenant_id, InvoiceCounter.year == year)
            .values(last_number=InvoiceCounter.last_number + 1, updated_at=now)
            .returning(InvoiceCounter.last_number, InvoiceCounter.prefix)
            .execution_options(synchronize_session=False)
        ).one_or_none()

    def create_invoice_counter(self, tenant_id, year, prefix, now):
        """Insert the first counter row for the year at 1, inside a savepoint."""
        with self.session.begin_nested():
            self.session.add(
                InvoiceCounter(
                    tenant_id=tenant_id,
                    year=year,
                    last_number=1,
                    prefix=prefix,
                    created_at=now,
                    updated_at=now,
                )
            )
        return 1

    def get_invoice_counter(self, tenant_id, year):
        return self.session.execute(
            select(InvoiceCounter).where(
                InvoiceCounter.tenant_id == tenant_id,
                InvoiceCounter.year == year,
            )
        ).scalar_one_or_none()

    # -- queries for schedulers and read models ---------------------------

    def due_subscriptions(self, now, statuses, retry_cutoff, limit):
        return self.session.execute(
            select(Subscription.id, Subscription.tenant_id)
            .where(
                Subscription.status.in_(statuses),
                Subscription.next_billing_date.is_not(None),
                Subscription.next_billing_date <= now,
                or_(
                    Subscription.last_payment_attempt.is_(None),
                    Subscription.last_payment_attempt <= retry_cutoff,
                ),
            )
            .order_by(Subscription.next_billing_date)
            .limit(limit)
        ).all()

    def state_changes(self, subscription_id, tenant_id):
        return self.session.execute(
            select(SubscriptionStateChange)
            .where(
                SubscriptionStateChange.subscription_id == subscription_id,
                SubscriptionStateChange.tenant_id == tenant_id,
            )
            .order_by(SubscriptionStateChange.id)
        ).scalars().all()

    def invoices_for(self, subscription_id, tenant_id):
        return self.session.execute(
            select(Invoice)
            .where(Invoice.subscription_id == subscription_id, Invoice.tenant_id == tenant_id)
            .order_by(Invoice.created_at)
        ).scalars().all()

    def payments_for(self, subscription_id, tenant_id):
        return self.session.execute(
            select(Payment)
            .join(Invoice, Payment.invoice_id == Invoice.id)
            .where(Invoice.subscription_id == subscription_id, Payment.tenant_id == tenant_id)
            .order_by(Payment.created_at)
        ).scalars().all()
